"""Schemas related to direct messages and conversations."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from app.models.enums import MessageType

from .common import CamelModel
from .users import PublicUser


class AttachmentIn(CamelModel):
    """Reference to an already uploaded file."""

    url: str = Field(..., min_length=1, max_length=1024)
    filename: str | None = Field(default=None, max_length=255)
    size: int | None = Field(default=None, ge=0)


class AttachmentRead(AttachmentIn):
    id: int


class MessageRead(CamelModel):
    """Serialized representation of a stored message."""

    id: int
    sender_id: int
    receiver_id: int
    sender: PublicUser | None = None
    content: str
    message_type: MessageType = MessageType.TEXT
    attachments: list[AttachmentRead] = Field(default_factory=list)
    conversation_id: str
    reply_to: int | None = None
    client_message_id: str | None = None
    is_read: bool = False
    read_at: datetime | None = None
    is_edited: bool = False
    edited_at: datetime | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class SendMessageRequest(CamelModel):
    """Payload accepted by the REST send endpoint and the socket handler."""

    receiver_id: int | None = None
    content: str | None = None
    message_type: str = MessageType.TEXT.value
    attachments: list[AttachmentIn] = Field(default_factory=list)
    reply_to: int | None = None
    client_message_id: str | None = Field(default=None, max_length=64)


class EditMessageRequest(CamelModel):
    content: str


class LastMessage(CamelModel):
    """Snapshot of the newest message of a conversation."""

    id: int
    sender_id: int
    content: str
    message_type: MessageType
    is_read: bool
    created_at: datetime


class ConversationView(CamelModel):
    """One entry of the conversation list."""

    conversation_id: str
    other_user: PublicUser
    last_message: LastMessage
    unread_count: int = 0


class ConversationPage(CamelModel):
    """A page of conversation history, oldest message first."""

    messages: list[MessageRead]
    other_user: PublicUser
    page: int = 1
    limit: int = 50
