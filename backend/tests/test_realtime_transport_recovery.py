from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.websockets import WebSocketState

from app.monitoring.metrics import realtime_transport_restarts_total
from helphub.realtime import RoomConnectionManager, RoomHub, startup_realtime
from helphub.realtime.transport import (
    BrokerConfig,
    BrokerTransport,
    TransportUnavailableError,
)


class FakePubSub:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._channels: set[str] = set()

    async def subscribe(self, channel: str) -> None:
        if not self._redis.online:
            raise ConnectionError("offline")
        self._channels.add(channel)
        self._redis.register(channel, self)

    async def unsubscribe(self, channel: str) -> None:
        if channel in self._channels:
            self._redis.unregister(channel, self)
            self._channels.discard(channel)

    async def close(self) -> None:
        for channel in list(self._channels):
            await self.unsubscribe(channel)
        self._channels.clear()

    async def listen(self):
        while True:
            message = await self._queue.get()
            if message is None:
                break
            yield message

    def push(self, message: dict[str, Any] | None) -> None:
        self._queue.put_nowait(message)


class FakeRedis:
    def __init__(self) -> None:
        self.online = True
        self._pubsubs: dict[str, set[FakePubSub]] = {}

    async def ping(self) -> None:
        if not self.online:
            raise ConnectionError("offline")

    async def publish(self, channel: str, payload: str) -> None:
        if not self.online:
            raise ConnectionError("offline")
        for pubsub in list(self._pubsubs.get(channel, set())):
            pubsub.push({"type": "message", "data": payload})

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def close(self) -> None:
        self.online = False
        for subscribers in list(self._pubsubs.values()):
            for pubsub in list(subscribers):
                pubsub.push(None)
        self._pubsubs.clear()

    def register(self, channel: str, pubsub: FakePubSub) -> None:
        self._pubsubs.setdefault(channel, set()).add(pubsub)

    def unregister(self, channel: str, pubsub: FakePubSub) -> None:
        subscribers = self._pubsubs.get(channel)
        if not subscribers:
            return
        subscribers.discard(pubsub)
        if not subscribers:
            self._pubsubs.pop(channel, None)

    def fail(self) -> None:
        self.online = False
        for subscribers in list(self._pubsubs.values()):
            for pubsub in list(subscribers):
                pubsub.push(None)


class FakeRedisFactory:
    def __init__(self) -> None:
        self.instances: list[FakeRedis] = []

    def from_url(self, *_args: Any, **_kwargs: Any) -> FakeRedis:
        client = FakeRedis()
        self.instances.append(client)
        return client


@pytest.fixture(autouse=True)
def reset_transport_restart_metric() -> None:
    realtime_transport_restarts_total._samples.clear()
    yield
    realtime_transport_restarts_total._samples.clear()


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio("asyncio")
async def test_redis_transport_recovers_after_disconnect(monkeypatch):
    factory = FakeRedisFactory()
    monkeypatch.setattr(
        "helphub.realtime.transport.redis_asyncio",
        SimpleNamespace(from_url=factory.from_url),
    )
    monkeypatch.setattr("helphub.realtime.transport._REDIS_RECOVERY_BASE_DELAY", 0.01)
    monkeypatch.setattr("helphub.realtime.transport._REDIS_RECOVERY_MAX_DELAY", 0.05)

    transport = BrokerTransport(BrokerConfig(redis_url="redis://fake"))
    await transport.start()

    received: list[dict[str, Any]] = []
    received_event = asyncio.Event()

    async def handler(payload: dict[str, Any]) -> None:
        received.append(payload)
        received_event.set()

    subscription = await transport.subscribe("room", handler, backend="redis")

    await transport.publish("room", {"value": 1}, backend="redis")
    await asyncio.wait_for(received_event.wait(), timeout=1.0)
    received_event.clear()
    received.clear()

    first_client = factory.instances[0]
    first_client.fail()
    await asyncio.sleep(0)

    with pytest.raises(TransportUnavailableError):
        await transport.publish("room", {"value": 2}, backend="redis")

    async def wait_for_instances(expected: int) -> None:
        for _ in range(50):
            if len(factory.instances) >= expected:
                return
            await asyncio.sleep(0.02)
        raise AssertionError("Redis client was not recreated")

    await wait_for_instances(2)

    async def publish_with_retry(payload: dict[str, Any]) -> None:
        for _ in range(20):
            try:
                await transport.publish("room", payload, backend="redis")
                return
            except TransportUnavailableError:
                await asyncio.sleep(0.05)
        raise AssertionError("Redis transport did not recover in time")

    await publish_with_retry({"value": 3})
    await asyncio.wait_for(received_event.wait(), timeout=1.5)

    assert received == [{"value": 3}]
    restarts = sum(
        value for (backend, _reason), value in realtime_transport_restarts_total._samples.items() if backend == "redis"
    )
    assert restarts >= 1.0

    await subscription.close()
    await transport.stop()


class SharedRedisFactory:
    """Hands the same fake server to every node, like a shared Redis."""

    def __init__(self, online: bool = True) -> None:
        self.server = FakeRedis()
        self.server.online = online

    def from_url(self, *_args: Any, **_kwargs: Any) -> FakeRedis:
        return self.server


class RecordingWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)


@pytest.mark.anyio("asyncio")
async def test_startup_keeps_serving_locally_when_redis_is_down(monkeypatch):
    factory = SharedRedisFactory(online=False)
    monkeypatch.setattr(
        "helphub.realtime.transport.redis_asyncio",
        SimpleNamespace(from_url=factory.from_url),
    )

    transport = BrokerTransport(BrokerConfig(redis_url="redis://fake", node_id="node-a"))
    connections = RoomConnectionManager()
    hub = RoomHub(connections, transport, node_id="node-a", backend="redis")
    websocket = RecordingWebSocket()
    await connections.join("1-2", websocket)

    await startup_realtime(transport, hub)

    assert transport.connected is False
    delivered = await hub.emit("1-2", "user-typing", {"senderId": 1})
    assert delivered == 1
    assert websocket.sent == [{"type": "user-typing", "data": {"senderId": 1}}]

    await transport.stop()


@pytest.mark.anyio("asyncio")
async def test_room_events_reach_sockets_on_other_nodes_once(monkeypatch):
    factory = SharedRedisFactory()
    monkeypatch.setattr(
        "helphub.realtime.transport.redis_asyncio",
        SimpleNamespace(from_url=factory.from_url),
    )

    nodes = []
    for node_id in ("node-a", "node-b"):
        transport = BrokerTransport(BrokerConfig(redis_url="redis://fake", node_id=node_id))
        connections = RoomConnectionManager()
        hub = RoomHub(connections, transport, node_id=node_id, backend="redis")
        websocket = RecordingWebSocket()
        await connections.join("1-2", websocket)
        await transport.start()
        await hub.start()
        nodes.append((transport, hub, websocket))

    (_, hub_a, socket_a), (_, _, socket_b) = nodes
    await hub_a.emit("1-2", "receive-message", {"id": 7, "content": "hello"})

    for _ in range(50):
        if socket_b.sent:
            break
        await asyncio.sleep(0.01)

    expected = {"type": "receive-message", "data": {"id": 7, "content": "hello"}}
    assert socket_b.sent == [expected]
    assert socket_a.sent == [expected]

    for transport, hub, _ in nodes:
        await hub.stop()
    # both nodes share one fake server; closing it once is enough
    await nodes[0][0].stop()
