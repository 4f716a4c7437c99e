"""Unit tests validating Pydantic schema constraints."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.schemas import AttachmentIn, Envelope, MessageRead, SendMessageRequest, UnreadCount, UserCreate


def test_user_create_strips_name():
    user = UserCreate(login="bob", password="supersecret", name="  Bob  ")
    assert user.name == "Bob"


def test_user_create_enforces_password_length():
    with pytest.raises(ValidationError):
        UserCreate(login="bob", password="short", name="Bob")


def test_send_request_accepts_camel_case():
    request = SendMessageRequest.model_validate(
        {"receiverId": 2, "content": "hi", "clientMessageId": "abc", "replyTo": 5}
    )
    assert request.receiver_id == 2
    assert request.client_message_id == "abc"
    assert request.reply_to == 5
    assert request.message_type == "text"


def test_attachment_requires_url():
    with pytest.raises(ValidationError):
        AttachmentIn(url="")


def test_message_payload_is_camel_case():
    created = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
    message = MessageRead(
        id=1,
        sender_id=1,
        receiver_id=2,
        content="hi",
        conversation_id="1-2",
        created_at=created,
        updated_at=created,
    )

    payload = message.to_payload()

    assert payload["conversationId"] == "1-2"
    assert payload["messageType"] == "text"
    assert payload["createdAt"].startswith("2026-01-01T10:00:00")
    assert "conversation_id" not in payload


def test_envelope_wraps_data():
    envelope = Envelope[UnreadCount](data=UnreadCount(unread_count=3))
    assert envelope.to_payload() == {"success": True, "data": {"unreadCount": 3}}
