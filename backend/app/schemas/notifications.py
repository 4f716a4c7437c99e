"""Schemas for user notifications."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.models.enums import NotificationPriority, NotificationType

from .common import CamelModel


class NotificationRead(CamelModel):
    id: int
    title: str
    message: str
    type: NotificationType
    priority: NotificationPriority
    related_message_id: int | None = None
    related_user_id: int | None = None
    action_url: str | None = None
    metadata: dict[str, Any] | None = None
    is_read: bool = False
    read_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime
