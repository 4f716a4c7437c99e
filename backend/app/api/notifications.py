"""Notification endpoints for the signed-in user."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_current_user, get_notification_bridge
from app.models import User
from app.schemas import Envelope, NotificationRead, StatusMessage, UnreadCount
from app.services import NotificationBridge

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=Envelope[list[NotificationRead]])
async def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    bridge: NotificationBridge = Depends(get_notification_bridge),
) -> Envelope[list[NotificationRead]]:
    return Envelope(data=bridge.list_for_user(current_user.id, page, limit))


@router.get("/unread-count", response_model=Envelope[UnreadCount])
async def notifications_unread_count(
    current_user: User = Depends(get_current_user),
    bridge: NotificationBridge = Depends(get_notification_bridge),
) -> Envelope[UnreadCount]:
    return Envelope(data=UnreadCount(unread_count=bridge.unread_count(current_user.id)))


@router.put("/read-all", response_model=StatusMessage)
async def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    bridge: NotificationBridge = Depends(get_notification_bridge),
) -> StatusMessage:
    bridge.mark_all_read(current_user.id)
    return StatusMessage(message="All notifications marked as read")


@router.put("/{notification_id}/read", response_model=StatusMessage)
async def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    bridge: NotificationBridge = Depends(get_notification_bridge),
) -> StatusMessage:
    bridge.mark_read(notification_id, current_user.id)
    return StatusMessage(message="Notification marked as read")
