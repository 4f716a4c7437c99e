"""Room membership of live websockets and cross-instance room fan-out."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import (
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
)

from .transport import ROOMS_TOPIC, BrokerTransport, Subscription, TransportUnavailableError

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send *data* unless the socket is gone; return whether it was sent."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Failed to send websocket message: %s", exc)
        return False


def build_event(event: str, data: Any) -> dict[str, Any]:
    return {"type": event, "data": data}


class RoomConnectionManager:
    """Track which local websockets joined which rooms."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._memberships: Dict[WebSocket, Set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def join(self, room: str, websocket: WebSocket) -> bool:
        """Add *websocket* to *room*; joining twice is a no-op."""

        async with self._lock:
            members = self._rooms[room]
            if websocket in members:
                return False
            members.add(websocket)
            self._memberships[websocket].add(room)
            return True

    async def leave_all(self, websocket: WebSocket) -> set[str]:
        async with self._lock:
            rooms = self._memberships.pop(websocket, set())
            for room in rooms:
                self._discard(room, websocket)
            return rooms

    def _discard(self, room: str, websocket: WebSocket) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            self._rooms.pop(room, None)

    async def broadcast(
        self,
        room: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[WebSocket] | None = None,
    ) -> int:
        async with self._lock:
            targets = list(self._rooms.get(room, ()))
        skipped = set(exclude or ())
        delivered = 0
        for connection in targets:
            if connection in skipped:
                continue
            if await safe_send_json(connection, payload):
                delivered += 1
        return delivered


class RoomHub:
    """Emit room events locally and to every other instance via the broker.

    Events published by this node carry its id as ``origin`` and are ignored
    when they come back through the subscription.
    """

    def __init__(
        self,
        connections: RoomConnectionManager,
        transport: BrokerTransport,
        *,
        node_id: str,
        backend: str,
    ) -> None:
        self._connections = connections
        self._transport = transport
        self._node_id = node_id
        self._backend = backend
        self._subscription: Subscription | None = None
        self._publish_warning_logged = False

    @property
    def node_id(self) -> str:
        return self._node_id

    async def start(self) -> None:
        async def handle(message: dict[str, Any]) -> None:
            if message.get("origin") == self._node_id:
                return
            room = message.get("room")
            payload = message.get("payload")
            if not isinstance(room, str) or not isinstance(payload, dict):
                return
            await self._connections.broadcast(room, payload)
            realtime_events_total.labels(ROOMS_TOPIC, "in", payload.get("type", "unknown")).inc()

        try:
            self._subscription = await self._transport.subscribe(
                ROOMS_TOPIC, handle, backend=self._backend
            )
        except TransportUnavailableError:
            logger.warning(
                "Realtime backend unavailable; room events will be limited to this instance",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._subscription = None
            return
        realtime_subscriptions.labels(ROOMS_TOPIC, self._backend).inc()

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            realtime_subscriptions.labels(ROOMS_TOPIC, self._backend).dec()
            self._subscription = None

    async def emit(
        self,
        room: str,
        event: str,
        data: Any,
        *,
        exclude: Iterable[WebSocket] | None = None,
    ) -> int:
        """Deliver ``{"type": event, "data": data}`` to every member of *room*."""

        payload = build_event(event, data)
        delivered = await self._connections.broadcast(room, payload, exclude=exclude)
        if self._transport.configured:
            await self._publish(event, {"origin": self._node_id, "room": room, "payload": payload})
        return delivered

    async def _publish(self, event: str, message: dict[str, Any]) -> None:
        try:
            await self._transport.publish(ROOMS_TOPIC, message, backend=self._backend)
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while broadcasting %s room event; operating in local-only mode",
                    event,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
            realtime_publish_errors_total.labels(ROOMS_TOPIC, self._backend, "unavailable").inc()
        except Exception:
            realtime_publish_errors_total.labels(ROOMS_TOPIC, self._backend, "error").inc()
            logger.exception("Unexpected error while broadcasting %s room event", event)
        else:
            self._publish_warning_logged = False
            realtime_events_total.labels(ROOMS_TOPIC, "out", event).inc()


async def startup_realtime(transport: BrokerTransport, hub: RoomHub) -> None:
    """Connect the broker and subscribe the hub; fall back to local-only delivery."""

    if not transport.configured:
        logger.info("No realtime broker configured; room events stay on this instance")
        return
    try:
        await transport.start()
    except (TransportUnavailableError, OSError):
        logger.warning(
            "Realtime backend unavailable during startup; continuing without cross-node sync",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return
    await hub.start()


async def shutdown_realtime(transport: BrokerTransport, hub: RoomHub) -> None:
    await hub.stop()
    await transport.stop()
