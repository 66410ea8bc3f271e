"""Chat read paths and setup operations that sit beside the lifecycle.

ChatService covers what the HTTP layer needs besides message transitions:
opening a chat between two users, listing a user's chats, reading history,
user search, and the hard-delete ("purge") path, which deliberately bypasses
the lifecycle state machine.
"""
import logging
from typing import List, Tuple

from connectly.realtime.broadcaster import EventBroadcaster

from .errors import ForbiddenError, NotFoundError, ValidationError
from .lifecycle import MESSAGE_DELETED_EVENT
from .models import Chat, ChatSummary, Message, MessageDeletedEvent, MessagePreview, User
from .store import ChatStore, MessageStore, UserStore, utcnow

logger = logging.getLogger(__name__)

# Maximum number of users returned by a search
SEARCH_LIMIT = 10


def _visible(message: Message) -> Message:
    if not message.isDeleted:
        return message
    return message.model_copy(update={"text": "", "attachments": []})


class ChatService:
    def __init__(
        self,
        users: UserStore,
        chats: ChatStore,
        messages: MessageStore,
        broadcaster: EventBroadcaster,
    ) -> None:
        self._users = users
        self._chats = chats
        self._messages = messages
        self._broadcaster = broadcaster

    # =========================================================================
    # Chats
    # =========================================================================

    def open_chat(self, user_id: str, other_user_id: str) -> Tuple[Chat, bool]:
        """Return the chat between two users, creating it on first contact.

        Returns:
            Tuple of (chat, created).

        Raises:
            ValidationError: the caller tried to open a chat with themselves.
            NotFoundError: the other user does not exist.
        """
        if not other_user_id or not other_user_id.strip():
            raise ValidationError("Invalid otherUserId")
        if user_id == other_user_id:
            raise ValidationError("Cannot chat with yourself")
        if self._users.get(other_user_id) is None:
            raise NotFoundError("User not found")

        existing = self._chats.find_by_members(user_id, other_user_id)
        if existing is not None:
            return existing, False

        chat = self._chats.create(user_id, other_user_id)
        logger.info("[Chats] Opened chat %s between %s and %s", chat.id, user_id, other_user_id)
        return chat, True

    def summarize(self, chat: Chat) -> ChatSummary:
        profiles = self._users.get_many(chat.members)
        members = [
            profiles.get(member_id) or User(id=member_id, name="", email="")
            for member_id in chat.members
        ]
        last = self._messages.get_message(chat.lastMessageId) if chat.lastMessageId else None
        preview = None
        if last is not None:
            preview = MessagePreview(
                id=last.id,
                chatId=last.chatId,
                senderId=last.senderId,
                text="" if last.isDeleted else last.text,
                isDeleted=last.isDeleted,
                editedAt=last.editedAt,
                deletedAt=last.deletedAt,
                createdAt=last.createdAt,
            )
        return ChatSummary(
            id=chat.id,
            members=members,
            createdAt=chat.createdAt,
            updatedAt=chat.updatedAt,
            lastMessage=preview,
        )

    def list_chats(self, user_id: str) -> List[ChatSummary]:
        """The user's chats, most recent activity first."""
        return [self.summarize(chat) for chat in self._chats.list_for_user(user_id)]

    def get_messages(self, chat_id: str, user_id: str) -> List[Message]:
        """Chronological history of a chat, for one of its members.

        Raises:
            NotFoundError: chat does not exist.
            ForbiddenError: user is not a member.
        """
        if self._chats.get(chat_id) is None:
            raise NotFoundError("Chat not found")
        if not self._chats.is_member(chat_id, user_id):
            raise ForbiddenError("Not allowed")
        return [_visible(m) for m in self._messages.list_messages(chat_id)]

    # =========================================================================
    # Hard delete
    # =========================================================================

    async def purge_message(self, message_id: str, caller_id: str) -> MessageDeletedEvent:
        """Physically remove one of the caller's messages.

        Works on active and soft-deleted messages alike. Open clients are told
        with the same ``message_deleted`` event soft-delete uses.

        Raises:
            NotFoundError: message does not exist.
            ForbiddenError: caller is not the sender.
        """
        message = self._messages.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.senderId != caller_id:
            raise ForbiddenError("You can delete only your own messages")

        removed = self._messages.delete_message(message_id)
        if removed is None:
            raise NotFoundError("Message not found")

        logger.info("[Chats] %s purged %s from chat %s", caller_id, message_id, message.chatId)
        event = MessageDeletedEvent(
            chatId=message.chatId, messageId=message_id, deletedAt=utcnow()
        )
        await self._broadcaster.emit(
            message.chatId, MESSAGE_DELETED_EVENT, event.model_dump(mode="json")
        )
        return event

    # =========================================================================
    # Users
    # =========================================================================

    def search_users(self, email: str, user_id: str) -> List[User]:
        """Users whose email contains ``email`` (case-insensitive), minus the caller."""
        fragment = (email or "").strip()
        if not fragment:
            raise ValidationError("email query param is required")
        return self._users.search_by_email(fragment, exclude_id=user_id, limit=SEARCH_LIMIT)
