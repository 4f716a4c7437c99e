"""Websocket connection to the chat gateway."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)


class RealtimeConnection:
    """One authenticated websocket speaking ``{"type", "data"}`` frames."""

    def __init__(
        self,
        url: str,
        token: str,
        *,
        open_timeout: float = 10.0,
        ping_interval: float | None = 20.0,
    ) -> None:
        self._url = url
        self._token = token
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._websocket: Any | None = None

    @property
    def is_open(self) -> bool:
        return self._websocket is not None

    async def open(self) -> None:
        if self._websocket is not None:
            return
        separator = "&" if "?" in self._url else "?"
        self._websocket = await websockets.connect(
            f"{self._url}{separator}{urlencode({'token': self._token})}",
            open_timeout=self._open_timeout,
            ping_interval=self._ping_interval,
        )
        logger.debug("Realtime connection opened", extra={"url": self._url})

    async def emit(self, event: str, data: Any = None) -> None:
        if self._websocket is None:
            raise ConnectionError("Realtime connection is not open")
        await self._websocket.send(json.dumps({"type": event, "data": data}))

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded server events until the connection closes."""

        if self._websocket is None:
            return
        try:
            async for raw in self._websocket:
                try:
                    payload = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    logger.warning("Ignored malformed realtime frame")
                    continue
                if isinstance(payload, dict):
                    yield payload
        except ConnectionClosed:
            logger.debug("Realtime connection closed by server")

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self.events()

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await websocket.close()
