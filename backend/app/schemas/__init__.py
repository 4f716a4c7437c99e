"""Pydantic schemas for API payloads."""

from .auth import LoginRequest, Token, UserCreate, UserRead
from .common import CamelModel, Envelope, MessageEnvelope, StatusMessage, UnreadCount
from .messages import (
    AttachmentIn,
    AttachmentRead,
    ConversationPage,
    ConversationView,
    EditMessageRequest,
    LastMessage,
    MessageRead,
    SendMessageRequest,
)
from .notifications import NotificationRead
from .users import PublicUser

__all__ = [
    "LoginRequest",
    "Token",
    "UserCreate",
    "UserRead",
    "CamelModel",
    "Envelope",
    "MessageEnvelope",
    "StatusMessage",
    "UnreadCount",
    "AttachmentIn",
    "AttachmentRead",
    "ConversationPage",
    "ConversationView",
    "EditMessageRequest",
    "LastMessage",
    "MessageRead",
    "SendMessageRequest",
    "NotificationRead",
    "PublicUser",
]
