"""Database models package."""

from .base import Base
from .chat import Message, MessageAttachment, Notification, User
from .enums import MessageType, NotificationPriority, NotificationType

__all__ = [
    "Base",
    "User",
    "Message",
    "MessageAttachment",
    "Notification",
    "MessageType",
    "NotificationType",
    "NotificationPriority",
]
