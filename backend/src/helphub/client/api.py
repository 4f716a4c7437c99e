"""Async REST client for the messaging API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ChatApiError(Exception):
    """Raised when the API answers with an error or cannot be reached.

    ``status_code`` is ``None`` for transport failures.
    """

    def __init__(self, status_code: int | None, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return response.reason_phrase


class ChatApiClient:
    """Thin wrapper over ``httpx.AsyncClient`` with one method per endpoint.

    Responses are returned as the ``data`` member of the server envelope, in
    the camelCase shape the server produces.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._token = token

    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = dict(kwargs.pop("headers", None) or {})
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("Request %s %s failed: %s", method, path, exc)
            raise ChatApiError(None, f"Network error: {exc}") from exc
        if response.is_error:
            raise ChatApiError(response.status_code, _error_message(response))
        if not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def login(self, login: str, password: str) -> dict[str, Any]:
        return await self._request("POST", "/api/auth/login", json={"login": login, "password": password})

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------
    async def send_message(
        self,
        receiver_id: int,
        content: str,
        *,
        message_type: str = "text",
        attachments: list[dict[str, Any]] | None = None,
        reply_to: int | None = None,
        client_message_id: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "receiverId": receiver_id,
            "content": content,
            "messageType": message_type,
            "attachments": attachments or [],
        }
        if reply_to is not None:
            payload["replyTo"] = reply_to
        if client_message_id is not None:
            payload["clientMessageId"] = client_message_id
        body = await self._request("POST", "/api/chat/send", json=payload)
        return body["data"]

    async def list_conversations(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/api/chat/conversations")
        return body["data"]

    async def get_conversation(self, user_id: int, *, page: int = 1, limit: int = 50) -> dict[str, Any]:
        body = await self._request(
            "GET", f"/api/chat/conversation/{user_id}", params={"page": page, "limit": limit}
        )
        return body["data"]

    async def mark_read(self, user_id: int) -> None:
        await self._request("PUT", f"/api/chat/read/{user_id}")

    async def unread_count(self) -> int:
        body = await self._request("GET", "/api/chat/unread-count")
        return int(body["data"]["unreadCount"])

    async def delete_message(self, message_id: int) -> None:
        await self._request("DELETE", f"/api/chat/message/{message_id}")

    async def edit_message(self, message_id: int, content: str) -> dict[str, Any]:
        body = await self._request("PUT", f"/api/chat/message/{message_id}", json={"content": content})
        return body["data"]

    async def search(self, query: str, *, user_id: int | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"query": query}
        if user_id is not None:
            params["userId"] = user_id
        body = await self._request("GET", "/api/chat/search", params=params)
        return body["data"]

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    async def notifications(self, *, page: int = 1, limit: int | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"page": page}
        if limit is not None:
            params["limit"] = limit
        body = await self._request("GET", "/api/notifications", params=params)
        return body["data"]

    async def notifications_unread_count(self) -> int:
        body = await self._request("GET", "/api/notifications/unread-count")
        return int(body["data"]["unreadCount"])

    async def mark_notification_read(self, notification_id: int) -> None:
        await self._request("PUT", f"/api/notifications/{notification_id}/read")

    async def mark_all_notifications_read(self) -> None:
        await self._request("PUT", "/api/notifications/read-all")
