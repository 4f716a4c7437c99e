"""Realtime delivery of chat events over websockets and a message broker."""

from .gateway import ChatGateway
from .rooms import RoomConnectionManager, RoomHub, safe_send_json, shutdown_realtime, startup_realtime
from .transport import BrokerConfig, BrokerTransport, Subscription, TransportUnavailableError

__all__ = [
    "BrokerConfig",
    "BrokerTransport",
    "ChatGateway",
    "RoomConnectionManager",
    "RoomHub",
    "Subscription",
    "TransportUnavailableError",
    "safe_send_json",
    "shutdown_realtime",
    "startup_realtime",
]
