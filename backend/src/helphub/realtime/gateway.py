"""Chat event handling for authenticated websocket sessions."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

from fastapi.websockets import WebSocket

from app.core.conversation import conversation_key, personal_room
from app.core.errors import MessagingError
from app.monitoring.metrics import realtime_connections, realtime_events_total
from app.schemas import MessageRead
from app.services import MessageStore, PresenceRegistry
from app.services.notifications import NEW_MESSAGE_TITLE, new_message_text

from .rooms import RoomConnectionManager, RoomHub, build_event, safe_send_json

logger = logging.getLogger(__name__)

RECEIVE_MESSAGE = "receive-message"
RECEIVE_NOTIFICATION = "receive-notification"
USER_TYPING = "user-typing"
USER_STOP_TYPING = "user-stop-typing"
MESSAGE_DELETED = "message-deleted"
MESSAGE_UPDATED = "message-updated"
MESSAGES_READ = "messages-read"
USER_ONLINE = "user-online"
USER_OFFLINE = "user-offline"

Handler = Callable[[WebSocket, int, Any], Awaitable[None]]


def _as_user_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ChatGateway:
    """Routes client events to the message store and fans results out to rooms.

    One gateway serves every connection of the process. Handlers never raise
    into the connection loop; failures are logged and, where useful, reported
    back to the originating socket as an ``error`` event.
    """

    def __init__(
        self,
        store: MessageStore,
        hub: RoomHub,
        connections: RoomConnectionManager,
        presence: PresenceRegistry,
    ) -> None:
        self._store = store
        self._hub = hub
        self._connections = connections
        self._presence = presence
        self._handlers: Dict[str, Handler] = {
            "join-user-room": self._join_user_room,
            "join-chat": self._join_chat,
            "send-message": self._send_message,
            "typing": self._typing,
            "stop-typing": self._stop_typing,
            "ping": self._ping,
            "pong": self._ignore,
        }

    @property
    def connections(self) -> RoomConnectionManager:
        return self._connections

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connect(self, websocket: WebSocket, user_id: int) -> None:
        await self._connections.join(personal_room(user_id), websocket)
        came_online = await self._presence.connect(user_id, websocket)
        realtime_connections.labels("chat").inc()
        logger.debug("Chat session opened", extra={"user_id": user_id})
        if came_online:
            await self._announce_presence(user_id, USER_ONLINE)

    async def disconnect(self, websocket: WebSocket, user_id: int) -> None:
        await self._connections.leave_all(websocket)
        went_offline = await self._presence.disconnect(user_id, websocket)
        realtime_connections.labels("chat").dec()
        logger.debug("Chat session closed", extra={"user_id": user_id})
        if went_offline:
            await self._announce_presence(user_id, USER_OFFLINE)

    async def _announce_presence(self, user_id: int, event: str) -> None:
        """Tell everyone who shares a conversation with *user_id* about the change."""

        try:
            counterparts = self._store.counterpart_ids(user_id)
            for other_id in counterparts:
                await self._hub.emit(personal_room(other_id), event, {"userId": user_id})
        except Exception:
            logger.exception("Failed to broadcast %s", event, extra={"user_id": user_id})

    async def handle(self, websocket: WebSocket, user_id: int, frame: Any) -> None:
        """Dispatch one decoded client frame."""

        if not isinstance(frame, dict):
            await self._send_error(websocket, "Message payload must be a JSON object")
            return
        event = frame.get("type")
        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            await self._send_error(websocket, f"Unsupported event '{event}'")
            return
        realtime_events_total.labels("chat", "in", event).inc()
        try:
            await handler(websocket, user_id, frame.get("data"))
        except Exception:
            logger.exception("Failed to handle %s event", event, extra={"user_id": user_id})
            await self._send_error(websocket, "Internal error")

    @staticmethod
    async def _send_error(websocket: WebSocket, detail: str) -> None:
        await safe_send_json(websocket, build_event("error", {"message": detail}))

    # ------------------------------------------------------------------
    # Client events
    # ------------------------------------------------------------------
    async def _join_user_room(self, websocket: WebSocket, user_id: int, data: Any) -> None:
        if isinstance(data, dict):
            data = data.get("userId")
        if data is not None and _as_user_id(data) != user_id:
            logger.warning(
                "Dropped join-user-room for another user",
                extra={"user_id": user_id, "requested": data},
            )
            return
        await self._connections.join(personal_room(user_id), websocket)

    async def _join_chat(self, websocket: WebSocket, user_id: int, data: Any) -> None:
        receiver_id = _as_user_id(data.get("receiverId")) if isinstance(data, dict) else None
        if receiver_id is None:
            await self._send_error(websocket, "Receiver ID is required")
            return
        await self._connections.join(conversation_key(user_id, receiver_id), websocket)

    async def _send_message(self, websocket: WebSocket, user_id: int, data: Any) -> None:
        if not isinstance(data, dict):
            await self._send_error(websocket, "Receiver ID and content are required")
            return
        claimed_sender = data.get("senderId")
        if claimed_sender is not None and _as_user_id(claimed_sender) != user_id:
            logger.warning(
                "Dropped send-message with a mismatched sender",
                extra={"user_id": user_id, "claimed_sender": claimed_sender},
            )
            return
        receiver_id = _as_user_id(data.get("receiverId"))
        content = data.get("content")
        if receiver_id is None or not isinstance(content, str) or not content.strip():
            await self._send_error(websocket, "Receiver ID and content are required")
            return

        try:
            message = self._store.create(
                user_id,
                receiver_id,
                content,
                message_type=data.get("messageType") or "text",
                attachments=data.get("attachments"),
                reply_to=_as_user_id(data.get("replyTo")),
                client_message_id=data.get("clientMessageId"),
                origin="socket",
            )
        except MessagingError as exc:
            logger.info(
                "Rejected socket message: %s",
                exc.message,
                extra={"user_id": user_id, "receiver_id": receiver_id},
            )
            await self._send_error(websocket, exc.message)
            return

        await self._connections.join(message.conversation_id, websocket)
        await self.deliver_message(message)

    async def _typing(self, websocket: WebSocket, user_id: int, data: Any) -> None:
        await self._relay_typing(websocket, user_id, data, USER_TYPING, True)

    async def _stop_typing(self, websocket: WebSocket, user_id: int, data: Any) -> None:
        await self._relay_typing(websocket, user_id, data, USER_STOP_TYPING, False)

    async def _relay_typing(
        self, websocket: WebSocket, user_id: int, data: Any, event: str, default: bool
    ) -> None:
        receiver_id = _as_user_id(data.get("receiverId")) if isinstance(data, dict) else None
        if receiver_id is None:
            return
        is_typing = data.get("isTyping", default)
        await self._hub.emit(
            conversation_key(user_id, receiver_id),
            event,
            {"senderId": user_id, "receiverId": receiver_id, "isTyping": bool(is_typing)},
            exclude={websocket},
        )

    async def _ping(self, websocket: WebSocket, user_id: int, data: Any) -> None:
        await safe_send_json(websocket, {"type": "pong"})

    async def _ignore(self, websocket: WebSocket, user_id: int, data: Any) -> None:
        return None

    # ------------------------------------------------------------------
    # Server side emits, shared with the REST handlers
    # ------------------------------------------------------------------
    async def deliver_message(self, message: MessageRead) -> None:
        """Broadcast a stored message and notify its receiver."""

        await self._hub.emit(message.conversation_id, RECEIVE_MESSAGE, message.to_payload())
        sender_name = message.sender.name if message.sender is not None else str(message.sender_id)
        await self._hub.emit(
            personal_room(message.receiver_id),
            RECEIVE_NOTIFICATION,
            {
                "title": NEW_MESSAGE_TITLE,
                "message": new_message_text(sender_name),
                "type": "message",
                "senderId": message.sender_id,
                "messageId": message.id,
                "conversationId": message.conversation_id,
            },
        )

    async def message_deleted(self, message: MessageRead) -> None:
        await self._hub.emit(
            message.conversation_id,
            MESSAGE_DELETED,
            {"messageId": message.id, "conversationId": message.conversation_id},
        )

    async def message_updated(self, message: MessageRead) -> None:
        await self._hub.emit(message.conversation_id, MESSAGE_UPDATED, message.to_payload())

    async def messages_read(self, reader_id: int, other_user_id: int) -> None:
        key = conversation_key(reader_id, other_user_id)
        await self._hub.emit(key, MESSAGES_READ, {"readerId": reader_id, "conversationId": key})
