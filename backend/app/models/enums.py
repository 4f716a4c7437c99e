from __future__ import annotations

from enum import Enum


class MessageType(str, Enum):
    """Kinds of content a chat message can carry."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class NotificationType(str, Enum):
    """Categories of notifications shown to a user."""

    MESSAGE = "message"
    POST_ACCEPTED = "post_accepted"
    POST_COMPLETED = "post_completed"
    RATING_RECEIVED = "rating_received"
    HELP_REQUEST = "help_request"
    SYSTEM = "system"
    ADMIN = "admin"


class NotificationPriority(str, Enum):
    """Display priority for notifications."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"
