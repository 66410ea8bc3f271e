"""WebSocket endpoint and presence view.

This module provides:
    - WebSocket /ws: Real-time event stream for one authenticated user
    - GET /presence: Currently online user ids
    - GET /presence/{user_id}: Whether one user is online

Protocol:
    Every frame, in both directions, is ``{"event": <name>, "data": <payload>}``.

    Client commands (fire-and-forget, never acknowledged):
        - join_chat: data is the chat id
        - leave_chat: data is the chat id
        - typing: data is {chatId, isTyping}
        - chat:seen: data is {chatId}

    Server events:
        - new_message, message_updated, message_deleted, chat:seen (chat room)
        - typing (chat room, sender's socket excluded)
        - presence:list (every connection)
        - error (issuing connection only, for a failed chat:seen)

    The credential travels in the upgrade request (``?token=`` or an
    ``Authorization: Bearer`` header). A bad credential closes the socket with
    1008 before it is accepted.
"""
import json
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from connectly.auth.dependencies import get_current_user_id
from connectly.auth.service import Unauthorized
from connectly.chat.errors import ChatError
from connectly.engine import Engine, get_engine

from .connection import Connection
from .gate import token_from_handshake

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

ERROR_EVENT = "error"

# 1008 = Policy Violation
POLICY_VIOLATION = 1008


def _chat_id(data: Any) -> Optional[str]:
    """Chat id from a command payload: a bare string or ``{"chatId": ...}``."""
    if isinstance(data, dict):
        data = data.get("chatId")
    return data if isinstance(data, str) else None


async def _dispatch(engine: Engine, connection: Connection, event: Any, data: Any) -> None:
    if event == "join_chat":
        chat_id = _chat_id(data)
        if engine.rooms.join(connection, chat_id):
            logger.debug(
                f"[WS] {connection} joined {chat_id} "
                f"({engine.rooms.get_room_size(chat_id)} connections)"
            )

    elif event == "leave_chat":
        engine.rooms.leave(connection, _chat_id(data))

    elif event == "typing":
        if not isinstance(data, dict):
            return
        await engine.typing.set_typing(connection, data.get("chatId"), data.get("isTyping"))

    elif event == "chat:seen":
        chat_id = _chat_id(data)
        if not chat_id or not chat_id.strip():
            return
        try:
            await engine.lifecycle.mark_seen(chat_id, connection.user_id)
        except ChatError as e:
            logger.info(f"[WS] chat:seen from {connection} failed: {e.message}")
            await engine.broadcaster.send(
                connection, ERROR_EVENT, {"message": e.message, "status": e.status_code}
            )

    else:
        logger.debug(f"[WS] Ignoring unknown event from {connection}: {event!r}")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Serve one client connection from handshake to teardown."""
    engine = get_engine(websocket)

    token = token_from_handshake(websocket.query_params, websocket.headers)
    try:
        user_id = engine.gate.authenticate(token)
    except Unauthorized:
        await websocket.close(code=POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = Connection(websocket, user_id)
    try:
        await engine.gate.admit(connection)

        # Main command loop
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.debug(f"[WS] Ignoring binary frame from {connection}")
                continue
            try:
                frame = json.loads(raw)
            except ValueError:
                logger.debug(f"[WS] Ignoring non-JSON frame from {connection}")
                continue
            if not isinstance(frame, dict):
                continue
            await _dispatch(engine, connection, frame.get("event"), frame.get("data"))

    except WebSocketDisconnect:
        logger.info(
            f"[WS] {connection} disconnected "
            f"(rooms={sorted(engine.rooms.rooms_of(connection))})"
        )
    finally:
        await engine.gate.release(connection)


@router.get("/presence", response_model=List[str])
async def list_presence(
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> List[str]:
    """Ids of users holding at least one open connection."""
    return await engine.presence.list_online()


@router.get("/presence/{other_user_id}")
async def get_presence(
    other_user_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    """Whether one user currently holds an open connection."""
    return {"userId": other_user_id, "online": await engine.presence.is_online(other_user_id)}
