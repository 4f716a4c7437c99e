"""Metric definitions for messaging and realtime delivery."""

from __future__ import annotations

from .registry import registry


chat_messages_created_total = registry.counter(
    "chat_messages_created_total",
    "Number of messages persisted, by the path that submitted them.",
    label_names=("origin",),
)

chat_notification_failures_total = registry.counter(
    "chat_notification_failures_total",
    "Number of message notifications that could not be created.",
)

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the chat gateway.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_subscriptions = registry.gauge(
    "realtime_pubsub_subscriptions",
    "Number of active broker subscriptions.",
    label_names=("topic", "backend"),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Number of realtime events that could not be published to the broker.",
    label_names=("topic", "backend", "reason"),
)

realtime_transport_restarts_total = registry.counter(
    "realtime_transport_restarts_total",
    "Number of times a broker connection was re-established.",
    label_names=("backend", "reason"),
)
