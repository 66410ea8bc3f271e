"""Chat domain: durable chats and messages plus the message lifecycle.

Components:
    - store: DuckDB-backed ChatStore / MessageStore / UserStore.
    - lifecycle: MessageLifecycle (create, edit, delete, mark_seen).
    - service: ChatService (open/list chats, read history, purge).
"""
