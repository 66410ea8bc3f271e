"""Message lifecycle: the only code path that mutates message content.

State machine per message::

    Active -> Edited -> Edited -> ... -> Deleted
    Active -> Deleted

Edited is re-entrant; Deleted is terminal. Seen receipts are orthogonal and
only ever grow.

Every transition is written to the durable store first; the event is emitted
only after the write returned. A store failure propagates to the caller and
nothing is broadcast.
"""
import logging
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from connectly.config import AttachmentSettings
from connectly.realtime.broadcaster import EventBroadcaster

from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .models import (
    Attachment,
    ChatSeenEvent,
    Message,
    MessageDeletedEvent,
    MessageUpdatedEvent,
)
from .store import ChatStore, MessageStore, utcnow

logger = logging.getLogger(__name__)

NEW_MESSAGE_EVENT = "new_message"
MESSAGE_UPDATED_EVENT = "message_updated"
MESSAGE_DELETED_EVENT = "message_deleted"
CHAT_SEEN_EVENT = "chat:seen"


def _clean_text(text: object) -> str:
    return text.strip() if isinstance(text, str) else ""


def _as_attachment(value: Any) -> Attachment:
    """Coerce a raw request item into an Attachment, or raise ValidationError."""
    if isinstance(value, Attachment):
        return value
    if not isinstance(value, dict):
        raise ValidationError("Invalid attachment")
    try:
        return Attachment.model_validate(value)
    except PydanticValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise ValidationError(f"Invalid attachment: {', '.join(fields)}") from e


class MessageLifecycle:
    """Validates message transitions, persists them, then notifies the room."""

    def __init__(
        self,
        messages: MessageStore,
        chats: ChatStore,
        broadcaster: EventBroadcaster,
        attachment_settings: Optional[AttachmentSettings] = None,
    ) -> None:
        self._messages = messages
        self._chats = chats
        self._broadcaster = broadcaster
        self._attachments = attachment_settings or AttachmentSettings()

    # =========================================================================
    # Transitions
    # =========================================================================

    async def create(
        self,
        chat_id: str,
        sender_id: str,
        text: Optional[str] = "",
        attachments: Optional[Sequence[Any]] = None,
    ) -> Message:
        """Persist a new message in the Active state and emit ``new_message``.

        Raises:
            ValidationError: both text and attachments empty, or an attachment
                that is malformed or outside the configured limits.
            NotFoundError: chat does not exist.
            ForbiddenError: sender is not a member of the chat.
        """
        text = _clean_text(text)
        attachments = [_as_attachment(a) for a in attachments or []]
        if not text and not attachments:
            raise ValidationError("Message is empty")
        self._validate_attachments(attachments)
        self._require_member(chat_id, sender_id)

        created_at = utcnow()
        message = self._messages.create_message(
            chat_id, sender_id, text, attachments, created_at
        )
        self._messages.touch_chat(chat_id, created_at, last_message_id=message.id)

        logger.info(
            f"[Lifecycle] {sender_id} created {message.id} in chat {chat_id}: {text[:50]}"
        )
        await self._broadcaster.emit(
            chat_id, NEW_MESSAGE_EVENT, message.model_dump(mode="json")
        )
        return message

    async def edit(self, message_id: str, caller_id: str, new_text: Optional[str]) -> Message:
        """Replace a message's text and emit ``message_updated``.

        Attachments and sender are never altered.

        Raises:
            ValidationError: new text is empty.
            NotFoundError: message does not exist.
            ForbiddenError: caller is not the sender.
            ConflictError: message is already deleted.
        """
        text = _clean_text(new_text)
        if not text:
            raise ValidationError("Invalid text")
        message = self._require_own_message(message_id, caller_id, "edit")

        edited_at = utcnow()
        updated = self._messages.update_message(
            message_id, only_active=True, text=text, edited_at=edited_at
        )
        if updated is None:
            raise ConflictError("Cannot edit a deleted message")
        self._messages.touch_chat(message.chatId, edited_at)

        logger.info(f"[Lifecycle] {caller_id} edited {message_id} in chat {message.chatId}")
        event = MessageUpdatedEvent(
            chatId=message.chatId,
            messageId=message_id,
            text=updated.text,
            editedAt=edited_at,
        )
        await self._broadcaster.emit(
            message.chatId, MESSAGE_UPDATED_EVENT, event.model_dump(mode="json")
        )
        return updated

    async def delete(self, message_id: str, caller_id: str) -> MessageDeletedEvent:
        """Soft-delete a message and emit ``message_deleted``.

        Text and attachments are cleared, the edit stamp is dropped, and the
        terminal flag is set.

        Raises:
            NotFoundError: message does not exist.
            ForbiddenError: caller is not the sender.
            ConflictError: message is already deleted.
        """
        message = self._require_own_message(message_id, caller_id, "delete")

        deleted_at = utcnow()
        updated = self._messages.update_message(
            message_id,
            only_active=True,
            text="",
            attachments=[],
            edited_at=None,
            is_deleted=True,
            deleted_at=deleted_at,
        )
        if updated is None:
            raise ConflictError("Message is already deleted")
        self._messages.touch_chat(message.chatId, deleted_at)

        logger.info(f"[Lifecycle] {caller_id} deleted {message_id} in chat {message.chatId}")
        event = MessageDeletedEvent(
            chatId=message.chatId, messageId=message_id, deletedAt=deleted_at
        )
        await self._broadcaster.emit(
            message.chatId, MESSAGE_DELETED_EVENT, event.model_dump(mode="json")
        )
        return event

    async def mark_seen(self, chat_id: str, caller_id: str) -> int:
        """Record that ``caller_id`` has seen every other-authored message.

        One aggregated ``chat:seen`` event is emitted per call, whether or not
        any receipt was new.

        Returns:
            Number of messages newly marked as seen.

        Raises:
            NotFoundError: chat does not exist.
            ForbiddenError: caller is not a member of the chat.
        """
        self._require_member(chat_id, caller_id)
        updated = self._messages.mark_seen(chat_id, caller_id)
        logger.debug("[Lifecycle] %s saw %d new message(s) in %s", caller_id, updated, chat_id)

        event = ChatSeenEvent(chatId=chat_id, userId=caller_id)
        await self._broadcaster.emit(chat_id, CHAT_SEEN_EVENT, event.model_dump())
        return updated

    # =========================================================================
    # Checks
    # =========================================================================

    def _require_member(self, chat_id: str, user_id: str) -> None:
        if self._messages.get_chat(chat_id) is None:
            raise NotFoundError("Chat not found")
        if not self._chats.is_member(chat_id, user_id):
            raise ForbiddenError("Not allowed")

    def _require_own_message(self, message_id: str, caller_id: str, action: str) -> Message:
        message = self._messages.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.senderId != caller_id:
            raise ForbiddenError(f"You can {action} only your own messages")
        if message.isDeleted:
            raise ConflictError(
                "Cannot edit a deleted message" if action == "edit"
                else "Message is already deleted"
            )
        return message

    def _validate_attachments(self, attachments: List[Attachment]) -> None:
        allowed = set(self._attachments.allowed_mime_types)
        for attachment in attachments:
            if attachment.type not in allowed:
                raise ValidationError(f"File type not allowed: {attachment.type}")
            if attachment.size > self._attachments.max_size_bytes:
                raise ValidationError(
                    f"Attachment {attachment.name} exceeds "
                    f"{self._attachments.max_size_bytes} bytes"
                )
