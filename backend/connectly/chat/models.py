"""Pydantic models for chats, messages and their event payloads.

Field names are camelCase because the same models are serialised straight
onto the wire (HTTP bodies and socket event payloads).
"""
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, List, Optional

from pydantic import AfterValidator, BaseModel, Field


def new_id() -> str:
    return uuid.uuid4().hex


def _as_utc(value: datetime) -> datetime:
    # Stored timestamps are naive UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Always timezone-aware, so it serialises with a "Z" suffix
UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


# =============================================================================
# Stored entities
# =============================================================================


class Attachment(BaseModel):
    """Reference to a binary stored by the attachment collaborator."""
    url: str = Field(..., min_length=1, description="Download URL")
    name: str = Field(..., min_length=1, description="Original filename")
    type: str = Field(..., min_length=1, description="MIME type")
    size: int = Field(..., ge=0, description="Size in bytes")


class User(BaseModel):
    id: str
    name: str
    email: str


class Chat(BaseModel):
    """A one-to-one chat.

    Attributes:
        id: Chat identifier, also the chat's room id.
        members: Exactly two user ids, stored in sorted order.
        lastMessageId: Most recent message in the chat, if any.
        createdAt: Creation time (UTC).
        updatedAt: Last activity time (UTC); never decreases.
    """
    id: str
    members: List[str] = Field(..., min_length=2, max_length=2)
    lastMessageId: Optional[str] = None
    createdAt: UTCDateTime
    updatedAt: UTCDateTime


class Message(BaseModel):
    """Full message record, as persisted and as broadcast in ``new_message``."""
    id: str
    chatId: str
    senderId: str
    text: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    createdAt: UTCDateTime
    editedAt: Optional[UTCDateTime] = None
    isDeleted: bool = False
    deletedAt: Optional[UTCDateTime] = None
    seenBy: List[str] = Field(default_factory=list)


# =============================================================================
# Event payloads
# =============================================================================


class MessageUpdatedEvent(BaseModel):
    chatId: str
    messageId: str
    text: str
    editedAt: UTCDateTime


class MessageDeletedEvent(BaseModel):
    chatId: str
    messageId: str
    isDeleted: bool = True
    deletedAt: UTCDateTime


class ChatSeenEvent(BaseModel):
    chatId: str
    userId: str


class TypingEvent(BaseModel):
    userId: str
    isTyping: bool


# =============================================================================
# Read models
# =============================================================================


class MessagePreview(BaseModel):
    id: str
    chatId: str
    senderId: str
    text: str
    isDeleted: bool
    editedAt: Optional[UTCDateTime] = None
    deletedAt: Optional[UTCDateTime] = None
    createdAt: UTCDateTime


class ChatSummary(BaseModel):
    """Chat as listed for one of its members."""
    id: str
    members: List[User]
    createdAt: UTCDateTime
    updatedAt: UTCDateTime
    lastMessage: Optional[MessagePreview] = None


# =============================================================================
# Request bodies
# =============================================================================


class OpenChatRequest(BaseModel):
    otherUserId: str


class SendMessageRequest(BaseModel):
    chatId: str
    text: str = ""
    # Checked by MessageLifecycle so a bad attachment is a 400, not a 422
    attachments: List[Any] = Field(default_factory=list)


class EditMessageRequest(BaseModel):
    text: str
