"""Domain errors raised by the messaging services."""

from __future__ import annotations

from fastapi import status


class MessagingError(Exception):
    """Base class for errors that map onto a client facing response."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MessagingError):
    """Raised when a request payload violates a domain rule."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(MessagingError):
    """Raised when a referenced user, message or notification does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(MessagingError):
    """Raised when the caller may not act on the referenced resource."""

    status_code = status.HTTP_403_FORBIDDEN
