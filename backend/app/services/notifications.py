"""Notification records created for message recipients."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, select, update

from app.config import Settings, get_settings
from app.core.errors import ForbiddenError, NotFoundError
from app.database import Database
from app.models import Notification, NotificationPriority, NotificationType
from app.monitoring.metrics import chat_notification_failures_total
from app.schemas import MessageRead, NotificationRead

logger = logging.getLogger(__name__)

NEW_MESSAGE_TITLE = "New Message"


def _not_expired(now: datetime):
    return or_(Notification.expires_at.is_(None), Notification.expires_at > now)


def new_message_text(sender_name: str) -> str:
    return f"You have a new message from {sender_name}"


def serialize_notification(notification: Notification) -> NotificationRead:
    return NotificationRead(
        id=notification.id,
        title=notification.title,
        message=notification.message,
        type=notification.type,
        priority=notification.priority,
        related_message_id=notification.related_message_id,
        related_user_id=notification.related_user_id,
        action_url=notification.action_url,
        metadata=notification.extra,
        is_read=notification.is_read,
        read_at=notification.read_at,
        expires_at=notification.expires_at,
        created_at=notification.created_at,
    )


class NotificationBridge:
    """Creates and queries notifications on behalf of the message store."""

    def __init__(self, database: Database, settings: Settings | None = None) -> None:
        self._database = database
        self._settings = settings or get_settings()

    def message_created(self, message: MessageRead, *, sender_name: str) -> NotificationRead | None:
        """Record a "new message" notification for the receiver of *message*.

        Runs in its own transaction after the message is committed. Failures
        are logged and counted; the caller never sees them.
        """

        try:
            with self._database.session() as db:
                notification = Notification(
                    user_id=message.receiver_id,
                    title=NEW_MESSAGE_TITLE,
                    message=new_message_text(sender_name),
                    type=NotificationType.MESSAGE,
                    priority=NotificationPriority.MEDIUM,
                    related_message_id=message.id,
                    related_user_id=message.sender_id,
                )
                db.add(notification)
                db.commit()
                return serialize_notification(notification)
        except Exception:
            chat_notification_failures_total.inc()
            logger.exception(
                "Failed to create notification for message %s",
                message.id,
                extra={"receiver_id": message.receiver_id},
            )
            return None

    def list_for_user(self, user_id: int, page: int = 1, limit: int | None = None) -> list[NotificationRead]:
        page = max(page, 1)
        limit = min(max(limit or self._settings.notification_page_size, 1), 100)
        now = datetime.now(timezone.utc)
        stmt = (
            select(Notification)
            .where(
                Notification.user_id == user_id,
                _not_expired(now),
            )
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        with self._database.session() as db:
            return [serialize_notification(item) for item in db.execute(stmt).scalars()]

    def unread_count(self, user_id: int) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
            _not_expired(datetime.now(timezone.utc)),
        )
        with self._database.session() as db:
            return int(db.execute(stmt).scalar_one())

    def mark_read(self, notification_id: int, user_id: int) -> NotificationRead:
        with self._database.session() as db:
            notification = db.get(Notification, notification_id)
            if notification is None:
                raise NotFoundError("Notification not found")
            if notification.user_id != user_id:
                raise ForbiddenError("You can only update your own notifications")
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = datetime.now(timezone.utc)
                db.commit()
            return serialize_notification(notification)

    def mark_all_read(self, user_id: int) -> int:
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        with self._database.session() as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount or 0
