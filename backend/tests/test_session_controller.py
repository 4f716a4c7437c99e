"""Tests for the client session controller using in-memory fakes."""

from __future__ import annotations

import asyncio
from typing import Any

import anyio
import pytest
from starlette.testclient import WebSocketTestSession

from app.core.conversation import conversation_key
from helphub.client import ChatSessionController


class FakeConnection:
    instances: list["FakeConnection"] = []

    def __init__(self, url: str, token: str) -> None:
        self.url = url
        self.token = token
        self.emitted: list[tuple[str, Any]] = []
        self.closed = False
        self.opened = False
        self.fail_emit = False
        self._incoming: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        FakeConnection.instances.append(self)

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    async def open(self) -> None:
        self.opened = True

    async def emit(self, event: str, data: Any = None) -> None:
        if self.fail_emit:
            raise ConnectionError("socket dropped")
        self.emitted.append((event, data))

    def push(self, frame: dict[str, Any] | None) -> None:
        self._incoming.put_nowait(frame)

    async def _frames(self):
        while True:
            frame = await self._incoming.get()
            if frame is None:
                return
            yield frame

    def __aiter__(self):
        return self._frames()

    async def close(self) -> None:
        self.closed = True
        self.push(None)


class FakeApi:
    def __init__(self) -> None:
        self.token: str | None = None
        self.sent: list[dict[str, Any]] = []
        self.read: list[int] = []
        self.closed = False

    def set_token(self, token: str | None) -> None:
        self.token = token

    async def aclose(self) -> None:
        self.closed = True

    async def send_message(self, receiver_id: int, content: str, **kwargs: Any) -> dict[str, Any]:
        self.sent.append({"receiverId": receiver_id, "content": content, **kwargs})
        return {
            "id": len(self.sent),
            "senderId": 1,
            "receiverId": receiver_id,
            "conversationId": f"1-{receiver_id}",
            "content": content,
            "clientMessageId": kwargs.get("client_message_id"),
            "createdAt": "2026-01-01T10:00:00Z",
        }

    async def list_conversations(self) -> list[dict[str, Any]]:
        return [{"conversationId": "1-2", "otherUser": {"id": 2}, "unreadCount": 3}]

    async def get_conversation(self, user_id: int, *, page: int = 1, limit: int = 50) -> dict[str, Any]:
        return {
            "otherUser": {"id": user_id, "name": "Bob"},
            "messages": [
                {"id": 10 + page, "senderId": user_id, "receiverId": 1, "createdAt": f"2026-01-0{4 - page}T10:00:00Z"}
            ],
            "page": page,
            "limit": limit,
        }

    async def mark_read(self, user_id: int) -> None:
        self.read.append(user_id)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_connections():
    FakeConnection.instances.clear()
    yield
    FakeConnection.instances.clear()


@pytest.fixture()
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture()
def controller(api) -> ChatSessionController:
    return ChatSessionController(api, "ws://chat.example/ws/chat", connection_factory=FakeConnection)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.anyio("asyncio")
async def test_login_opens_one_connection_and_joins_personal_room(controller, api):
    await controller.login("token-a", 1)
    await controller.login("token-a", 1)

    assert len(FakeConnection.instances) == 1
    connection = FakeConnection.instances[0]
    assert connection.token == "token-a"
    assert connection.emitted == [("join-user-room", 1)]
    assert api.token == "token-a"
    assert controller.is_connected

    await controller.close()
    assert connection.closed
    assert api.closed


@pytest.mark.anyio("asyncio")
async def test_relogin_replaces_the_connection(controller):
    await controller.login("token-a", 1)
    await controller.login("token-b", 2)

    first, second = FakeConnection.instances
    assert first.closed is True
    assert second.token == "token-b"
    assert controller.user_id == 2

    await controller.logout()
    assert second.closed is True
    assert controller.user_id is None
    assert not controller.is_connected


@pytest.mark.anyio("asyncio")
async def test_socket_send_uses_only_the_socket(controller, api):
    await controller.login("token-a", 1)

    result = await controller.send_message(2, "hello")

    assert result is None
    assert api.sent == []
    event, data = FakeConnection.instances[0].emitted[-1]
    assert event == "send-message"
    assert data["senderId"] == 1 and data["receiverId"] == 2 and data["content"] == "hello"
    assert data["clientMessageId"]

    await controller.close()


@pytest.mark.anyio("asyncio")
async def test_send_falls_back_to_rest_with_the_same_client_id(controller, api):
    await controller.login("token-a", 1)
    FakeConnection.instances[0].fail_emit = True

    result = await controller.send_message(2, "hello")

    assert result is not None
    [request] = api.sent
    assert request["client_message_id"] == result["clientMessageId"]
    assert controller.state.conversations[0]["lastMessage"]["content"] == "hello"

    await controller.close()


@pytest.mark.anyio("asyncio")
async def test_send_without_connection_uses_rest(api):
    controller = ChatSessionController(api, "ws://chat.example/ws/chat", connection_factory=FakeConnection)

    result = await controller.send_message(2, "offline hello")

    assert result["content"] == "offline hello"
    assert len(api.sent) == 1


@pytest.mark.anyio("asyncio")
async def test_incoming_events_update_state_and_listeners(controller):
    await controller.login("token-a", 1)
    await controller.refresh_conversations()
    await controller.open_conversation(2)
    received: list[dict[str, Any]] = []
    remove = controller.add_listener("receive-message", received.append)
    connection = FakeConnection.instances[0]

    assert ("join-chat", {"receiverId": 2}) in connection.emitted
    assert controller.state.total_unread == 0

    connection.push(
        {
            "type": "receive-message",
            "data": {
                "id": 50,
                "senderId": 2,
                "receiverId": 1,
                "conversationId": "1-2",
                "content": "hi",
                "createdAt": "2026-01-05T10:00:00Z",
            },
        }
    )
    connection.push({"type": "user-typing", "data": {"senderId": 2, "isTyping": True}})
    connection.push({"type": "ping"})
    await _settle()

    assert [item["id"] for item in controller.state.current_messages] == [11, 50]
    assert controller.state.typing_user_ids == {2}
    assert received and received[0]["id"] == 50
    assert ("pong", None) in connection.emitted

    remove()
    connection.push({"type": "message-deleted", "data": {"messageId": 50}})
    await _settle()
    assert [item["id"] for item in controller.state.current_messages] == [11]
    assert len(received) == 1

    await controller.close()


@pytest.mark.anyio("asyncio")
async def test_load_older_and_mark_read(controller, api):
    await controller.login("token-a", 1)
    await controller.refresh_conversations()
    await controller.open_conversation(2)

    await controller.load_older(2)
    await controller.mark_read(2)

    assert [item["id"] for item in controller.state.current_messages] == [12, 11]
    assert api.read == [2]

    await controller.close()


@pytest.mark.anyio("asyncio")
async def test_presence_events_update_the_conversation_list(controller):
    await controller.login("token-a", 1)
    await controller.refresh_conversations()
    connection = FakeConnection.instances[0]

    connection.push({"type": "user-online", "data": {"userId": 2}})
    await _settle()
    assert controller.state.online_user_ids == {2}
    assert controller.state.conversations[0]["otherUser"]["isOnline"] is True

    connection.push({"type": "user-offline", "data": {"userId": 2}})
    await _settle()
    assert controller.state.online_user_ids == set()
    assert controller.state.conversations[0]["otherUser"]["isOnline"] is False

    await controller.close()


@pytest.mark.anyio("asyncio")
async def test_server_closing_the_socket_releases_the_connection(controller, api):
    await controller.login("token-a", 1)
    connection = FakeConnection.instances[0]

    connection.push(None)
    await _settle()

    assert connection.closed is True
    assert not controller.is_connected

    result = await controller.send_message(2, "after the drop")
    assert result is not None
    assert len(api.sent) == 1

    await controller.close()


def _frames(connection: WebSocketTestSession) -> list[dict]:
    connection.send_json({"type": "ping"})
    frames = []
    while True:
        frame = connection.receive_json()
        if frame["type"] == "pong":
            return frames
        frames.append(frame)


def _send_over_socket(client, sender, receiver, token_for, *, receiver_joins: bool) -> list[dict]:
    """Send one message from *sender* and return what *receiver*'s socket got."""

    with client.websocket_connect(f"/ws/chat?token={token_for(sender)}") as socket_a:
        with client.websocket_connect(f"/ws/chat?token={token_for(receiver)}") as socket_b:
            if receiver_joins:
                socket_b.send_json({"type": "join-chat", "data": {"receiverId": sender.id}})
                assert _frames(socket_b) == []
            socket_a.send_json(
                {"type": "send-message", "data": {"receiverId": receiver.id, "content": "hi bob"}}
            )
            assert [frame["type"] for frame in _frames(socket_a)] == ["receive-message"]
            return _frames(socket_b)


def test_notification_alone_bumps_the_conversation(client, make_user, token_for, api):
    alice, bob = make_user("Alice"), make_user("Bob")
    controller = ChatSessionController(api, "ws://testserver/ws/chat", connection_factory=FakeConnection)
    controller.state.reset(bob.id)

    frames = _send_over_socket(client, alice, bob, token_for, receiver_joins=False)
    assert [frame["type"] for frame in frames] == ["receive-notification"]
    for frame in frames:
        anyio.run(controller.dispatch, frame)

    [entry] = controller.state.conversations
    assert entry["conversationId"] == conversation_key(alice.id, bob.id)
    assert entry["otherUser"]["id"] == alice.id
    assert entry["unreadCount"] == 1
    assert controller.state.total_unread == 1
    assert len(controller.state.notifications) == 1


def test_message_and_notification_count_once(client, make_user, token_for, api):
    alice, bob = make_user("Alice"), make_user("Bob")
    controller = ChatSessionController(api, "ws://testserver/ws/chat", connection_factory=FakeConnection)
    controller.state.reset(bob.id)

    frames = _send_over_socket(client, alice, bob, token_for, receiver_joins=True)
    assert [frame["type"] for frame in frames] == ["receive-message", "receive-notification"]
    for frame in frames:
        anyio.run(controller.dispatch, frame)

    [entry] = controller.state.conversations
    assert entry["unreadCount"] == 1
    assert entry["lastMessage"]["content"] == "hi bob"
    assert controller.state.total_unread == 1
