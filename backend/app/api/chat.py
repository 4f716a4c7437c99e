"""Direct messaging endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status

from helphub.realtime import ChatGateway

from app.api.deps import get_chat_gateway, get_conversation_aggregator, get_current_user, get_message_store
from app.core.errors import ValidationError
from app.models import User
from app.schemas import (
    ConversationPage,
    ConversationView,
    EditMessageRequest,
    Envelope,
    MessageEnvelope,
    MessageRead,
    SendMessageRequest,
    StatusMessage,
    UnreadCount,
)
from app.services import ConversationAggregator, MessageStore

router = APIRouter(prefix="/chat", tags=["chat"])

logger = logging.getLogger(__name__)

# nginx convention for a request the client abandoned
CLIENT_CLOSED_REQUEST = 499


class FetchAborted(Exception):
    """Raised inside a conversation fetch when the client went away."""


@router.post("/send", response_model=MessageEnvelope[MessageRead], status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    gateway: ChatGateway = Depends(get_chat_gateway),
) -> MessageEnvelope[MessageRead]:
    """Store a message for clients without a live connection and deliver it."""

    if payload.receiver_id is None or not (payload.content or "").strip():
        raise ValidationError("Receiver ID and content are required")

    message = store.create(
        current_user.id,
        payload.receiver_id,
        payload.content,
        message_type=payload.message_type,
        attachments=payload.attachments,
        reply_to=payload.reply_to,
        client_message_id=payload.client_message_id,
        origin="rest",
    )
    await gateway.deliver_message(message)
    return MessageEnvelope(message="Message sent successfully", data=message)


@router.get("/conversations", response_model=Envelope[list[ConversationView]])
async def list_conversations(
    current_user: User = Depends(get_current_user),
    aggregator: ConversationAggregator = Depends(get_conversation_aggregator),
) -> Envelope[list[ConversationView]]:
    return Envelope(data=aggregator.list_conversations(current_user.id))


@router.get("/conversation/{user_id}", response_model=Envelope[ConversationPage])
async def get_conversation(
    user_id: int,
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    """Return a page of history and mark the other user's messages read.

    The read state is only committed when the client is still connected.
    """

    try:
        with store.conversation_fetch(current_user.id, user_id, page, limit) as result:
            if await request.is_disconnected():
                raise FetchAborted()
    except FetchAborted:
        logger.info(
            "Client disconnected during conversation fetch",
            extra={"user_id": current_user.id, "other_user_id": user_id},
        )
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return Envelope(data=result)


@router.put("/read/{user_id}", response_model=StatusMessage)
async def mark_read(
    user_id: int,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    gateway: ChatGateway = Depends(get_chat_gateway),
) -> StatusMessage:
    changed = store.mark_read(user_id, current_user.id)
    if changed:
        await gateway.messages_read(current_user.id, user_id)
    return StatusMessage(message="Messages marked as read")


@router.get("/unread-count", response_model=Envelope[UnreadCount])
async def unread_count(
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
) -> Envelope[UnreadCount]:
    return Envelope(data=UnreadCount(unread_count=store.get_unread_count(current_user.id)))


@router.delete("/message/{message_id}", response_model=StatusMessage)
async def delete_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    gateway: ChatGateway = Depends(get_chat_gateway),
) -> StatusMessage:
    message = store.soft_delete(message_id, current_user.id)
    await gateway.message_deleted(message)
    return StatusMessage(message="Message deleted successfully")


@router.put("/message/{message_id}", response_model=MessageEnvelope[MessageRead])
async def edit_message(
    message_id: int,
    payload: EditMessageRequest,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    gateway: ChatGateway = Depends(get_chat_gateway),
) -> MessageEnvelope[MessageRead]:
    message = store.edit(message_id, current_user.id, payload.content)
    await gateway.message_updated(message)
    return MessageEnvelope(message="Message updated successfully", data=message)


@router.get("/search", response_model=Envelope[list[MessageRead]])
async def search_messages(
    query: str | None = Query(default=None),
    user_id: int | None = Query(default=None, alias="userId"),
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
) -> Envelope[list[MessageRead]]:
    return Envelope(data=store.search(current_user.id, query or "", other_user_id=user_id))
