"""Session controller tying the REST client, the socket and the chat state."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import uuid
from collections import defaultdict
from typing import Any, Callable, Protocol

from websockets.exceptions import WebSocketException

from app.core.conversation import conversation_key

from .api import ChatApiClient
from .connection import RealtimeConnection
from .state import ChatState

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], Any]


class Connection(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def emit(self, event: str, data: Any = None) -> None: ...

    def __aiter__(self): ...

    async def close(self) -> None: ...


ConnectionFactory = Callable[[str, str], Connection]


class ChatSessionController:
    """Owns the live connection of one signed-in user.

    While authenticated there is exactly one connection; signing in as a
    different user or with a new token replaces it. Incoming events update
    :attr:`state` first and are then handed to registered listeners.
    """

    def __init__(
        self,
        api: ChatApiClient,
        realtime_url: str,
        *,
        connection_factory: ConnectionFactory | None = None,
        state: ChatState | None = None,
    ) -> None:
        self._api = api
        self._realtime_url = realtime_url
        self._connection_factory: ConnectionFactory = connection_factory or RealtimeConnection
        self.state = state or ChatState()
        self._token: str | None = None
        self._connection: Connection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    @property
    def user_id(self) -> int | None:
        return self.state.user_id

    @property
    def is_connected(self) -> bool:
        return (
            self._connection is not None
            and self._connection.is_open
            and self._reader is not None
            and not self._reader.done()
        )

    # ------------------------------------------------------------------
    # Authentication lifecycle
    # ------------------------------------------------------------------
    async def login(self, token: str, user_id: int) -> None:
        if token == self._token and user_id == self.state.user_id and self.is_connected:
            return
        await self._teardown()
        self._token = token
        self._api.set_token(token)
        self.state.reset(user_id)

        connection = self._connection_factory(self._realtime_url, token)
        try:
            await connection.open()
        except (OSError, WebSocketException):
            logger.warning("Realtime connection failed; continuing with REST only", exc_info=True)
            return
        self._connection = connection
        self._reader = asyncio.create_task(self._read_events(connection), name=f"chat-session-{user_id}")
        await connection.emit("join-user-room", user_id)

    async def logout(self) -> None:
        await self._teardown()
        self._token = None
        self._api.set_token(None)
        self.state.reset()

    async def close(self) -> None:
        """Release the reader task, the socket and the HTTP client."""

        await self._teardown()
        await self._api.aclose()

    async def _teardown(self) -> None:
        reader, self._reader = self._reader, None
        connection, self._connection = self._connection, None
        if reader is not None and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if connection is not None:
            await connection.close()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def add_listener(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register *listener* for *event*; the returned callable removes it."""

        self._listeners[event].append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event].remove(listener)

        return remove

    async def _notify(self, event: str, data: dict[str, Any]) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener for %s failed", event)

    # ------------------------------------------------------------------
    # Incoming events
    # ------------------------------------------------------------------
    async def _read_events(self, connection: Connection) -> None:
        try:
            async for frame in connection:
                await self.dispatch(frame)
        finally:
            # a teardown in progress has already detached the connection
            if self._connection is connection:
                self._connection = None
                self._reader = None
                logger.info("Realtime connection ended", extra={"user_id": self.state.user_id})
                await connection.close()

    async def dispatch(self, frame: dict[str, Any]) -> None:
        event = frame.get("type")
        data = frame.get("data")
        if not isinstance(event, str):
            return
        if event == "ping":
            if self._connection is not None:
                await self._connection.emit("pong")
            return
        if not isinstance(data, dict):
            data = {}

        if event == "receive-message":
            self.state.apply_incoming_message(data)
        elif event == "message-updated":
            self.state.apply_message_update(data)
        elif event == "message-deleted":
            self.state.remove_message(data.get("messageId"))
        elif event == "messages-read":
            self.state.apply_read_receipt(data.get("readerId"), data.get("conversationId"))
        elif event == "user-typing":
            self.state.apply_typing(data.get("senderId"), bool(data.get("isTyping", True)))
        elif event == "user-stop-typing":
            self.state.apply_typing(data.get("senderId"), False)
        elif event == "receive-notification":
            self.state.apply_notification(data)
        elif event in ("user-online", "user-offline"):
            user_id = data.get("userId")
            if user_id is not None:
                self.state.apply_presence(user_id, event == "user-online")
        elif event == "error":
            logger.warning("Gateway reported an error: %s", data.get("message"))
        await self._notify(event, data)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    async def refresh_conversations(self) -> list[dict[str, Any]]:
        conversations = await self._api.list_conversations()
        self.state.set_conversations(conversations)
        return conversations

    async def open_conversation(self, other_user_id: int, *, page: int = 1, limit: int = 50) -> dict[str, Any]:
        if self.is_connected:
            await self._connection.emit("join-chat", {"receiverId": other_user_id})
        result = await self._api.get_conversation(other_user_id, page=page, limit=limit)
        self.state.open_conversation(result["otherUser"], result["messages"])
        if self.state.user_id is not None:
            self.state.mark_conversation_read(conversation_key(self.state.user_id, other_user_id))
        return result

    async def load_older(self, page: int, *, limit: int = 50) -> None:
        if self.state.counterpart is None:
            return
        result = await self._api.get_conversation(self.state.counterpart["id"], page=page, limit=limit)
        self.state.merge_history(result["messages"])

    async def send_message(
        self,
        receiver_id: int,
        content: str,
        *,
        message_type: str = "text",
        attachments: list[dict[str, Any]] | None = None,
        reply_to: int | None = None,
    ) -> dict[str, Any] | None:
        """Send one logical message through exactly one write path.

        With a live connection the socket persists it and the stored copy
        comes back as ``receive-message``; ``None`` is returned. Without one,
        the REST endpoint stores it and the stored message is returned. Both
        carry the same client message id, so a retry never stores twice.
        """

        client_message_id = uuid.uuid4().hex
        if self.is_connected:
            try:
                await self._connection.emit(
                    "send-message",
                    {
                        "senderId": self.state.user_id,
                        "receiverId": receiver_id,
                        "content": content,
                        "messageType": message_type,
                        "attachments": attachments or [],
                        "replyTo": reply_to,
                        "clientMessageId": client_message_id,
                    },
                )
                return None
            except (ConnectionError, WebSocketException):
                logger.warning("Socket send failed; retrying over REST", exc_info=True)

        message = await self._api.send_message(
            receiver_id,
            content,
            message_type=message_type,
            attachments=attachments,
            reply_to=reply_to,
            client_message_id=client_message_id,
        )
        self.state.apply_incoming_message(message)
        return message

    async def set_typing(self, receiver_id: int, is_typing: bool) -> None:
        if not self.is_connected:
            return
        event = "typing" if is_typing else "stop-typing"
        await self._connection.emit(event, {"receiverId": receiver_id, "isTyping": is_typing})

    async def mark_read(self, other_user_id: int) -> None:
        await self._api.mark_read(other_user_id)
        if self.state.user_id is not None:
            self.state.mark_conversation_read(conversation_key(self.state.user_id, other_user_id))
