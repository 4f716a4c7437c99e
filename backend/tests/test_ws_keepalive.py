from __future__ import annotations

import time

from starlette.testclient import WebSocketTestSession


def test_chat_connection_survives_keepalive_timeout(client, settings, make_user, token_for) -> None:
    """Ensure that the server side keepalive pings keep the socket open."""

    token = token_for(make_user())

    # the app reads keepalive settings from the instance passed to create_app
    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05

    with client.websocket_connect(f"/ws/chat?token={token}") as connection:
        _assert_keepalive_sequence(connection)


def _assert_keepalive_sequence(connection: WebSocketTestSession) -> None:
    """Observe two keepalive pings with client responses to keep the connection active."""

    time.sleep(0.15)
    ping = connection.receive_json()
    assert ping["type"] == "ping"
    connection.send_json({"type": "pong"})

    time.sleep(0.12)
    ping_again = connection.receive_json()
    assert ping_again["type"] == "ping"
    connection.send_json({"type": "pong"})

    # pings queued while sleeping are drained before our own pong arrives
    connection.send_json({"type": "ping"})
    reply = connection.receive_json()
    while reply["type"] == "ping":
        reply = connection.receive_json()
    assert reply["type"] == "pong"
