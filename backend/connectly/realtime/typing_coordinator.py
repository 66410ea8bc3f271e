"""Typing indicator relay.

Nothing is stored: each signal is forwarded as-is to the other connections in
the chat room and forgotten. Clients debounce and send an explicit
``isTyping: false`` when the user stops; the latest signal wins.
"""
from connectly.chat.models import TypingEvent

from .broadcaster import EventBroadcaster
from .connection import Connection
from .rooms import is_valid_room_id

TYPING_EVENT = "typing"


class TypingCoordinator:
    def __init__(self, broadcaster: EventBroadcaster) -> None:
        self._broadcaster = broadcaster

    async def set_typing(self, connection: Connection, chat_id: object, is_typing: object) -> int:
        """Relay a typing signal to the room, excluding the sender's socket.

        Returns:
            Number of connections the signal reached (0 for an invalid chat id).
        """
        if not is_valid_room_id(chat_id):
            return 0
        event = TypingEvent(userId=connection.user_id, isTyping=bool(is_typing))
        return await self._broadcaster.emit(
            chat_id, TYPING_EVENT, event.model_dump(), exclude=connection
        )
