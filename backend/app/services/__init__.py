"""Application service helpers."""

from .conversations import ConversationAggregator
from .message_store import MessageStore, serialize_message
from .notifications import NotificationBridge
from .presence import PresenceRegistry
from .users import UserDirectory, serialize_public_user

__all__ = [
    "ConversationAggregator",
    "MessageStore",
    "NotificationBridge",
    "PresenceRegistry",
    "UserDirectory",
    "serialize_message",
    "serialize_public_user",
]
