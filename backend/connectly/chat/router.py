"""HTTP endpoints for chats and messages.

This module provides:
    - POST   /api/chats: Open (or reuse) the chat with another user
    - GET    /api/chats: The caller's chats, most recent first
    - GET    /api/chats/{chat_id}/messages: Chat history
    - POST   /api/chats/message: Send a message
    - POST   /api/chats/{chat_id}/seen: Mark a chat as seen
    - PATCH  /api/messages/{message_id}: Edit a message
    - DELETE /api/messages/{message_id}: Soft-delete a message
    - DELETE /api/messages/{message_id}/purge: Hard-delete a message

Every write goes through MessageLifecycle, which emits the matching socket
event after the store write succeeds.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from connectly.auth.dependencies import get_current_user_id
from connectly.engine import Engine, get_engine

from .errors import ChatError, handle_chat_error
from .models import (
    ChatSummary,
    EditMessageRequest,
    Message,
    OpenChatRequest,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chats"])


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


@router.post("/chats")
async def open_chat(
    body: OpenChatRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> JSONResponse:
    """Open the one-to-one chat with ``otherUserId``.

    Returns:
        The chat summary, 201 when it was just created, 200 otherwise.
    """
    try:
        chat, created = engine.chat_service.open_chat(user_id, body.otherUserId)
    except ChatError as e:
        raise handle_chat_error(e)
    summary = engine.chat_service.summarize(chat)
    return JSONResponse(
        summary.model_dump(mode="json"), status_code=201 if created else 200
    )


@router.get("/chats", response_model=List[ChatSummary])
async def list_chats(
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> List[ChatSummary]:
    return engine.chat_service.list_chats(user_id)


@router.get("/chats/{chat_id}/messages", response_model=List[Message])
async def get_messages(
    chat_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> List[Message]:
    """Chronological history; deleted messages come back blanked."""
    try:
        return engine.chat_service.get_messages(chat_id, user_id)
    except ChatError as e:
        raise handle_chat_error(e)


@router.post("/chats/message", response_model=Message, status_code=201)
async def send_message(
    body: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> Message:
    try:
        return await engine.lifecycle.create(
            body.chatId, user_id, body.text, body.attachments
        )
    except ChatError as e:
        raise handle_chat_error(e)


@router.post("/chats/{chat_id}/seen")
async def mark_seen(
    chat_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    try:
        updated = await engine.lifecycle.mark_seen(chat_id, user_id)
    except ChatError as e:
        raise handle_chat_error(e)
    return {"chatId": chat_id, "userId": user_id, "updated": updated}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.patch("/messages/{message_id}", response_model=Message)
async def edit_message(
    message_id: str,
    body: EditMessageRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> Message:
    try:
        return await engine.lifecycle.edit(message_id, user_id, body.text)
    except ChatError as e:
        raise handle_chat_error(e)


@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    """Soft-delete one of the caller's messages."""
    try:
        event = await engine.lifecycle.delete(message_id, user_id)
    except ChatError as e:
        raise handle_chat_error(e)
    return {"success": True, **event.model_dump(mode="json")}


@router.delete("/messages/{message_id}/purge")
async def purge_message(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    """Physically remove one of the caller's messages."""
    try:
        event = await engine.chat_service.purge_message(message_id, user_id)
    except ChatError as e:
        raise handle_chat_error(e)
    return {"success": True, "chatId": event.chatId, "messageId": event.messageId}
