"""Core utilities for the Help Hub messaging backend."""

from .conversation import conversation_key, personal_room
from .errors import ForbiddenError, MessagingError, NotFoundError, ValidationError

__all__ = [
    "conversation_key",
    "personal_room",
    "MessagingError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
]
