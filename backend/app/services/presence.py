"""Tracks which users currently hold a live websocket on this instance."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, Set

from fastapi.websockets import WebSocket


class PresenceRegistry:
    """Keeps track of WebSocket connections per user.

    A user is online while at least one of their connections is registered.
    The registry only knows about connections held by this process.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, Set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int, websocket: WebSocket) -> bool:
        """Register *websocket*; return ``True`` when the user just came online."""

        async with self._lock:
            sockets = self._connections[user_id]
            was_offline = not sockets
            sockets.add(websocket)
            return was_offline

    async def disconnect(self, user_id: int, websocket: WebSocket) -> bool:
        """Forget *websocket*; return ``True`` when the user went offline."""

        async with self._lock:
            sockets = self._connections.get(user_id)
            if not sockets:
                return False
            sockets.discard(websocket)
            if not sockets:
                self._connections.pop(user_id, None)
                return True
            return False

    def is_online(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))
