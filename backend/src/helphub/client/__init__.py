"""Client library for the Help Hub messaging service."""

from .api import ChatApiClient, ChatApiError
from .connection import RealtimeConnection
from .session import ChatSessionController
from .state import ChatState

__all__ = [
    "ChatApiClient",
    "ChatApiError",
    "ChatSessionController",
    "ChatState",
    "RealtimeConnection",
]
