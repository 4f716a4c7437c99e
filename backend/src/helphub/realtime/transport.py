"""Broker transport that fans realtime events out between backend instances."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import nats
import redis.asyncio as redis_asyncio
from nats.errors import Error as NatsError
from redis.exceptions import RedisError

from app.monitoring.metrics import realtime_transport_restarts_total

logger = logging.getLogger(__name__)

ROOMS_TOPIC = "rooms"

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)
_NATS_ERRORS: tuple[type[BaseException], ...] = (
    NatsError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_REDIS_RECOVERY_BASE_DELAY = 0.5
_REDIS_RECOVERY_MAX_DELAY = 30.0

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class BrokerConfig:
    """Connection settings for the realtime broker."""

    redis_url: str | None
    nats_url: str | None = None
    prefix: str = "helphub.realtime"
    node_id: str | None = None


class TransportUnavailableError(RuntimeError):
    """Raised when publishing to a broker backend that is not connected."""


class Subscription:
    """Handle returned when subscribing to a broker topic."""

    def __init__(self, name: str, cleanup: Callable[[], Awaitable[None]]) -> None:
        self.name = name
        self._cleanup = cleanup
        self._task: asyncio.Task[Any] | None = None

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        await self._cleanup()


@dataclass(slots=True)
class _RedisReader:
    channel: str
    handler: MessageHandler
    subscription: Subscription | None = None
    task: asyncio.Task[Any] | None = None
    pubsub: Any | None = None
    active: bool = True
    pausing: bool = False


def _decode(raw: Any, where: str) -> dict[str, Any] | None:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if not isinstance(raw, str):
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarded malformed realtime payload", extra={"channel": where})
        return None
    return payload if isinstance(payload, dict) else None


class BrokerTransport:
    """Publish/subscribe over Redis, or NATS when configured instead.

    Redis subscriptions are restored automatically after the connection
    drops; publishers see ``TransportUnavailableError`` until it is back.
    """

    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._redis: Any | None = None
        self._readers: list[_RedisReader] = []
        self._recovery_lock = asyncio.Lock()
        self._recovery_task: asyncio.Task[Any] | None = None
        self._nats: Any | None = None
        self._nats_subscriptions: list[Subscription] = []

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    @property
    def configured(self) -> bool:
        return bool(self._config.redis_url or self._config.nats_url)

    @property
    def connected(self) -> bool:
        return self._redis is not None or (self._nats is not None and self._nats.is_connected)

    def _name(self, topic: str) -> str:
        prefix = self._config.prefix.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    async def start(self) -> None:
        if self._config.redis_url and self._redis is None:
            await self._connect_redis()
        if self._config.nats_url and (self._nats is None or not self._nats.is_connected):
            try:
                self._nats = await nats.connect(self._config.nats_url, name=self._config.node_id)
            except (NatsError, OSError) as exc:
                logger.exception("Failed to connect to NATS realtime backend")
                raise TransportUnavailableError("NATS backend is unavailable") from exc

    async def stop(self) -> None:
        for reader in list(self._readers):
            if reader.subscription is not None:
                await reader.subscription.close()
        self._readers.clear()
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recovery_task
            self._recovery_task = None
        for subscription in list(self._nats_subscriptions):
            await subscription.close()
        self._nats_subscriptions.clear()
        if self._redis is not None:
            await self._redis.close()
            self._redis = None
        if self._nats is not None and self._nats.is_connected:
            await self._nats.drain()
        self._nats = None

    # ------------------------------------------------------------------
    # Redis connection and recovery
    # ------------------------------------------------------------------
    async def _connect_redis(self) -> None:
        client = redis_asyncio.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except (*_REDIS_ERRORS, OSError) as exc:
            logger.exception("Failed to connect to Redis realtime backend")
            await client.close()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        self._redis = client

    async def _pause(self, reader: _RedisReader) -> None:
        reader.pausing = True
        task = reader.task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        reader.task = None
        if reader.pubsub is not None:
            with contextlib.suppress(Exception):
                await reader.pubsub.unsubscribe(reader.channel)
            with contextlib.suppress(Exception):
                await reader.pubsub.close()
        reader.pubsub = None
        reader.pausing = False

    async def _drop(self, reader: _RedisReader) -> None:
        reader.active = False
        await self._pause(reader)
        if reader in self._readers:
            self._readers.remove(reader)

    async def _attach(self, reader: _RedisReader) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not connected")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(reader.channel)
        except _REDIS_ERRORS as exc:
            await pubsub.close()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        reader.pubsub = pubsub

        async def listen() -> None:
            try:
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    payload = _decode(message.get("data"), reader.channel)
                    if payload is not None:
                        await reader.handler(payload)
            finally:
                with contextlib.suppress(Exception):
                    await pubsub.unsubscribe(reader.channel)
                with contextlib.suppress(Exception):
                    await pubsub.close()

        task = asyncio.create_task(listen(), name=f"realtime-redis-{reader.channel}")
        reader.task = task
        if reader.subscription is not None:
            reader.subscription._task = task
        task.add_done_callback(lambda finished: asyncio.create_task(self._reader_done(reader, finished)))

    async def _reader_done(self, reader: _RedisReader, task: asyncio.Task[Any]) -> None:
        reader.task = None
        reader.pubsub = None
        if not reader.active or reader.pausing or task.cancelled():
            return
        exc = task.exception()
        logger.warning(
            "Redis subscription reader stopped; scheduling recovery",
            exc_info=exc,
            extra={"channel": reader.channel},
        )
        self._schedule_recovery("reader_stopped")

    def _schedule_recovery(self, reason: str) -> None:
        if self._config.redis_url is None:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        logger.info("Scheduling Redis realtime recovery", extra={"reason": reason})
        self._recovery_task = asyncio.create_task(self._recover(reason), name="realtime-redis-recovery")

    async def _recover(self, reason: str) -> None:
        attempt = 0
        while True:
            await asyncio.sleep(min(_REDIS_RECOVERY_BASE_DELAY * (2**attempt), _REDIS_RECOVERY_MAX_DELAY))
            try:
                await self._reconnect()
            except Exception:
                attempt += 1
                logger.exception(
                    "Redis realtime recovery attempt failed",
                    extra={"attempt": attempt, "reason": reason},
                )
                continue
            break
        realtime_transport_restarts_total.labels("redis", reason).inc()
        logger.info("Redis realtime backend recovered", extra={"reason": reason})
        self._recovery_task = None

    async def _reconnect(self) -> None:
        async with self._recovery_lock:
            for reader in list(self._readers):
                await self._pause(reader)
            if self._redis is not None:
                with contextlib.suppress(Exception):
                    await self._redis.close()
                self._redis = None
            await self._connect_redis()
            for reader in [item for item in self._readers if item.active]:
                await self._attach(reader)

    def _backend(self, backend: str | None) -> str:
        if backend:
            return backend
        if self._redis is not None:
            return "redis"
        if self._nats is not None and self._nats.is_connected:
            return "nats"
        raise TransportUnavailableError("No realtime backend is configured")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def publish(self, topic: str, payload: dict[str, Any], *, backend: str | None = None) -> None:
        target = self._backend(backend)
        encoded = json.dumps(payload)
        if target == "redis":
            if self._redis is None:
                raise TransportUnavailableError("Redis backend is not connected")
            channel = self._name(topic)
            try:
                await self._redis.publish(channel, encoded)
            except _REDIS_ERRORS as exc:
                self._schedule_recovery("publish_failed")
                raise TransportUnavailableError("Redis backend is unavailable") from exc
            logger.debug("Published realtime payload via Redis", extra={"channel": channel})
            return
        if target == "nats":
            if self._nats is None or not self._nats.is_connected:
                raise TransportUnavailableError("NATS backend is not connected")
            subject = self._name(topic)
            try:
                await self._nats.publish(subject, encoded.encode("utf-8"))
            except _NATS_ERRORS as exc:
                raise TransportUnavailableError("NATS backend is unavailable") from exc
            logger.debug("Published realtime payload via NATS", extra={"subject": subject})
            return
        raise TransportUnavailableError(f"Unsupported backend '{target}'")

    async def subscribe(
        self, topic: str, handler: MessageHandler, *, backend: str | None = None
    ) -> Subscription:
        target = self._backend(backend)
        if target == "redis":
            if self._redis is None:
                raise TransportUnavailableError("Redis backend is not connected")
            reader = _RedisReader(channel=self._name(topic), handler=handler)

            async def cleanup() -> None:
                await self._drop(reader)

            reader.subscription = Subscription(reader.channel, cleanup)
            self._readers.append(reader)
            try:
                await self._attach(reader)
            except TransportUnavailableError:
                await self._drop(reader)
                self._schedule_recovery("subscribe_failed")
                raise
            return reader.subscription

        if target == "nats":
            if self._nats is None or not self._nats.is_connected:
                raise TransportUnavailableError("NATS backend is not connected")
            subject = self._name(topic)

            async def callback(message: Any) -> None:
                payload = _decode(message.data, subject)
                if payload is not None:
                    await handler(payload)

            nats_subscription = await self._nats.subscribe(subject, cb=callback)

            async def unsubscribe() -> None:
                await nats_subscription.unsubscribe()

            wrapper = Subscription(subject, unsubscribe)
            self._nats_subscriptions.append(wrapper)
            return wrapper

        raise TransportUnavailableError(f"Unsupported backend '{target}'")
