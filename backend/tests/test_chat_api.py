"""Integration tests for the chat REST endpoints."""

from __future__ import annotations

from starlette.requests import Request


def test_endpoints_require_authentication(client):
    response = client.get("/api/chat/conversations")

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Not authenticated"}
    assert response.headers["www-authenticate"] == "Bearer"


def test_invalid_token_is_rejected(client):
    response = client.get("/api/chat/unread-count", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert response.json()["message"] == "Could not validate credentials"


def test_send_and_read_flow(client, make_user, auth_headers):
    alice, bob = make_user("Alice"), make_user("Bob")

    sent = client.post(
        "/api/chat/send",
        json={"receiverId": bob.id, "content": "hello bob", "clientMessageId": "c-1"},
        headers=auth_headers(alice),
    )
    assert sent.status_code == 201
    body = sent.json()
    assert body["success"] is True
    assert body["message"] == "Message sent successfully"
    assert body["data"]["conversationId"] == f"{alice.id}-{bob.id}"
    assert body["data"]["sender"]["name"] == "Alice"

    retry = client.post(
        "/api/chat/send",
        json={"receiverId": bob.id, "content": "hello bob", "clientMessageId": "c-1"},
        headers=auth_headers(alice),
    )
    assert retry.json()["data"]["id"] == body["data"]["id"]

    unread = client.get("/api/chat/unread-count", headers=auth_headers(bob))
    assert unread.json() == {"success": True, "data": {"unreadCount": 1}}

    conversations = client.get("/api/chat/conversations", headers=auth_headers(bob)).json()["data"]
    assert conversations[0]["unreadCount"] == 1
    assert conversations[0]["otherUser"]["name"] == "Alice"
    assert conversations[0]["lastMessage"]["content"] == "hello bob"

    history = client.get(f"/api/chat/conversation/{alice.id}", headers=auth_headers(bob))
    assert history.status_code == 200
    page = history.json()["data"]
    assert [item["content"] for item in page["messages"]] == ["hello bob"]
    assert page["otherUser"]["id"] == alice.id

    unread_after = client.get("/api/chat/unread-count", headers=auth_headers(bob))
    assert unread_after.json()["data"]["unreadCount"] == 0


def test_send_validation_errors_use_the_envelope(client, make_user, auth_headers):
    alice, bob = make_user(), make_user()
    headers = auth_headers(alice)

    missing = client.post("/api/chat/send", json={"receiverId": bob.id}, headers=headers)
    assert missing.status_code == 400
    assert missing.json() == {"success": False, "message": "Receiver ID and content are required"}

    too_long = client.post(
        "/api/chat/send", json={"receiverId": bob.id, "content": "x" * 1001}, headers=headers
    )
    assert too_long.status_code == 400
    assert too_long.json()["success"] is False

    unknown = client.post("/api/chat/send", json={"receiverId": 999, "content": "hi"}, headers=headers)
    assert unknown.status_code == 404
    assert unknown.json()["message"] == "Receiver not found"

    malformed = client.post("/api/chat/send", json={"receiverId": "abc", "content": "hi"}, headers=headers)
    assert malformed.status_code == 400
    assert malformed.json()["success"] is False
    assert malformed.json()["errors"]


def test_history_for_unknown_user_is_not_found(client, make_user, auth_headers):
    alice = make_user()

    response = client.get("/api/chat/conversation/4242", headers=auth_headers(alice))

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "User not found"}


def test_mark_read_edit_delete_and_search(client, store, make_user, auth_headers):
    alice, bob = make_user(), make_user()
    message = store.create(alice.id, bob.id, "typo hre")

    read = client.put(f"/api/chat/read/{alice.id}", headers=auth_headers(bob))
    assert read.json() == {"success": True, "message": "Messages marked as read"}
    assert store.get_unread_count(bob.id) == 0

    forbidden = client.put(
        f"/api/chat/message/{message.id}", json={"content": "changed"}, headers=auth_headers(bob)
    )
    assert forbidden.status_code == 403

    edited = client.put(
        f"/api/chat/message/{message.id}", json={"content": "typo here"}, headers=auth_headers(alice)
    )
    assert edited.status_code == 200
    assert edited.json()["data"]["isEdited"] is True

    found = client.get(
        "/api/chat/search", params={"query": "HERE", "userId": bob.id}, headers=auth_headers(alice)
    )
    assert [item["id"] for item in found.json()["data"]] == [message.id]

    blank = client.get("/api/chat/search", params={"query": " "}, headers=auth_headers(alice))
    assert blank.status_code == 400
    assert blank.json()["message"] == "Search query is required"

    deleted = client.delete(f"/api/chat/message/{message.id}", headers=auth_headers(alice))
    assert deleted.json() == {"success": True, "message": "Message deleted successfully"}
    history = client.get(f"/api/chat/conversation/{bob.id}", headers=auth_headers(alice))
    assert history.json()["data"]["messages"] == []


def test_health_and_metrics(client, store, make_user):
    alice, bob = make_user(), make_user()
    store.create(alice.id, bob.id, "counted")

    assert client.get("/health").json()["status"] == "ok"
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert 'chat_messages_created_total{origin="api"}' in metrics.text


def test_abandoned_history_request_keeps_messages_unread(client, store, make_user, auth_headers, monkeypatch):
    alice, bob = make_user(), make_user()
    store.create(alice.id, bob.id, "are you there?")

    async def disconnected(self) -> bool:
        return True

    monkeypatch.setattr(Request, "is_disconnected", disconnected)
    response = client.get(f"/api/chat/conversation/{alice.id}", headers=auth_headers(bob))

    assert response.status_code == 499
    assert store.get_unread_count(bob.id) == 1
