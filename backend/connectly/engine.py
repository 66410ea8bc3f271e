"""Wiring of the chat synchronization engine.

Every component receives its collaborators through its constructor; nothing
reaches a broadcaster or registry through a module global. One Engine is
built per application and stored on ``app.state.engine``.
"""
from dataclasses import dataclass
from typing import Optional

from starlette.requests import HTTPConnection

from connectly.auth.service import JWTVerifier, TokenVerifier
from connectly.chat.lifecycle import MessageLifecycle
from connectly.chat.service import ChatService
from connectly.chat.store import (
    ChatDatabase,
    DuckDBChatStore,
    DuckDBMessageStore,
    DuckDBUserStore,
)
from connectly.config import AppConfig
from connectly.realtime.broadcaster import EventBroadcaster
from connectly.realtime.gate import ConnectionGate
from connectly.realtime.presence import PresenceBackend, PresenceRegistry
from connectly.realtime.rooms import RoomManager
from connectly.realtime.typing_coordinator import TypingCoordinator


@dataclass
class Engine:
    config: AppConfig
    database: ChatDatabase
    users: DuckDBUserStore
    chats: DuckDBChatStore
    messages: DuckDBMessageStore
    verifier: TokenVerifier
    rooms: RoomManager
    broadcaster: EventBroadcaster
    presence: PresenceRegistry
    gate: ConnectionGate
    typing: TypingCoordinator
    lifecycle: MessageLifecycle
    chat_service: ChatService

    def close(self) -> None:
        self.database.close()


def build_engine(
    config: AppConfig,
    presence_backend: Optional[PresenceBackend] = None,
    verifier: Optional[TokenVerifier] = None,
) -> Engine:
    """Construct every component for ``config``.

    Args:
        config: Application configuration.
        presence_backend: Presence counter store (in-process by default).
        verifier: Token verifier (JWT from config by default).
    """
    database = ChatDatabase(config.database.path)
    users = DuckDBUserStore(database)
    chats = DuckDBChatStore(database)
    messages = DuckDBMessageStore(database)

    if verifier is None:
        verifier = JWTVerifier(
            config.jwt_secret,
            algorithm=config.auth.algorithm,
            leeway_seconds=config.auth.leeway_seconds,
            user_id_claim=config.auth.user_id_claim,
        )

    rooms = RoomManager()
    broadcaster = EventBroadcaster(rooms)
    presence = PresenceRegistry(broadcaster, presence_backend)

    return Engine(
        config=config,
        database=database,
        users=users,
        chats=chats,
        messages=messages,
        verifier=verifier,
        rooms=rooms,
        broadcaster=broadcaster,
        presence=presence,
        gate=ConnectionGate(verifier, rooms, presence, broadcaster),
        typing=TypingCoordinator(broadcaster),
        lifecycle=MessageLifecycle(messages, chats, broadcaster, config.attachments),
        chat_service=ChatService(users, chats, messages, broadcaster),
    )


def get_engine(connection: HTTPConnection) -> Engine:
    """FastAPI dependency returning the application's engine."""
    return connection.app.state.engine
