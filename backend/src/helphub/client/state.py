"""Client side view of the user's conversations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from app.core.conversation import conversation_key

Message = dict[str, Any]


def _timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return datetime.min.replace(tzinfo=timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def message_order(message: Message) -> tuple[datetime, int]:
    """Sort key matching the server ordering of a conversation."""

    return _timestamp(message.get("createdAt")), int(message.get("id") or 0)


@dataclass
class ChatState:
    """Conversation list and the currently open conversation.

    Messages are kept as the camelCase dictionaries received from the API
    or the gateway and are merged by id, so a message delivered by both the
    socket and a REST page appears once.
    """

    user_id: int | None = None
    conversations: list[dict[str, Any]] = field(default_factory=list)
    current_messages: list[Message] = field(default_factory=list)
    counterpart: dict[str, Any] | None = None
    total_unread: int = 0
    typing_user_ids: set[int] = field(default_factory=set)
    notifications: list[dict[str, Any]] = field(default_factory=list)
    online_user_ids: set[int] = field(default_factory=set)
    seen_message_ids: set[int] = field(default_factory=set)

    def reset(self, user_id: int | None = None) -> None:
        self.user_id = user_id
        self.conversations = []
        self.current_messages = []
        self.counterpart = None
        self.total_unread = 0
        self.typing_user_ids = set()
        self.notifications = []
        self.online_user_ids = set()
        self.seen_message_ids = set()

    @property
    def current_conversation_id(self) -> str | None:
        if self.counterpart is None or self.user_id is None:
            return None
        return conversation_key(self.user_id, self.counterpart["id"])

    # ------------------------------------------------------------------
    # Conversation list
    # ------------------------------------------------------------------
    def set_conversations(self, conversations: Iterable[dict[str, Any]]) -> None:
        self.conversations = list(conversations)
        self.total_unread = sum(int(item.get("unreadCount") or 0) for item in self.conversations)
        self.online_user_ids = {
            entry["otherUser"]["id"]
            for entry in self.conversations
            if (entry.get("otherUser") or {}).get("isOnline")
        }

    def _find_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        for entry in self.conversations:
            if entry.get("conversationId") == conversation_id:
                return entry
        return None

    def mark_conversation_read(self, conversation_id: str) -> None:
        entry = self._find_conversation(conversation_id)
        if entry is None:
            return
        self.total_unread = max(self.total_unread - int(entry.get("unreadCount") or 0), 0)
        entry["unreadCount"] = 0

    # ------------------------------------------------------------------
    # Open conversation
    # ------------------------------------------------------------------
    def open_conversation(self, counterpart: dict[str, Any], messages: Iterable[Message] = ()) -> None:
        if self.counterpart is None or self.counterpart.get("id") != counterpart.get("id"):
            self.current_messages = []
            self.typing_user_ids = set()
        self.counterpart = counterpart
        self.merge_history(messages)

    def merge_history(self, messages: Iterable[Message]) -> None:
        """Merge a page of history; repeated or overlapping pages are harmless."""

        by_id = {message["id"]: message for message in self.current_messages}
        for message in messages:
            if message.get("isDeleted"):
                by_id.pop(message["id"], None)
                continue
            by_id[message["id"]] = message
        self.current_messages = sorted(by_id.values(), key=message_order)

    def apply_incoming_message(self, message: Message) -> bool:
        """Record a newly delivered message.

        Returns ``True`` when the message belongs to the open conversation.
        Otherwise the conversation moves to the top of the list and, for
        messages from the other participant, its unread count grows once per
        message id.
        """

        sender_id = message.get("senderId")
        receiver_id = message.get("receiverId")
        conversation_id = message.get("conversationId") or conversation_key(sender_id, receiver_id)
        is_current = conversation_id == self.current_conversation_id
        if is_current:
            self.merge_history([message])

        other_id = receiver_id if sender_id == self.user_id else sender_id
        other_user = message.get("sender") if sender_id == other_id else None
        entry = self._bring_to_top(conversation_id, other_user or {"id": other_id})
        last = entry.get("lastMessage")
        if last is None or message_order(message) >= message_order(last):
            entry["lastMessage"] = {
                key: message.get(key)
                for key in ("id", "senderId", "content", "messageType", "isRead", "createdAt")
            }
        self._count_unread(entry, message.get("id"), counts=not is_current and sender_id != self.user_id)
        return is_current

    def apply_notification(self, notification: dict[str, Any]) -> None:
        """Record a notification; a new message one also updates the conversation list.

        A receiver that has not joined the conversation room only learns about
        the message through its personal room notification.
        """

        self.notifications.insert(0, notification)
        conversation_id = notification.get("conversationId")
        if notification.get("type") != "message" or not conversation_id:
            return
        if conversation_id == self.current_conversation_id:
            return
        sender_id = notification.get("senderId")
        if sender_id == self.user_id:
            return
        entry = self._bring_to_top(conversation_id, {"id": sender_id})
        self._count_unread(entry, notification.get("messageId"), counts=True)

    def _bring_to_top(self, conversation_id: str, other_user: dict[str, Any]) -> dict[str, Any]:
        entry = self._find_conversation(conversation_id)
        if entry is None:
            entry = {"conversationId": conversation_id, "otherUser": other_user, "unreadCount": 0}
        else:
            self.conversations.remove(entry)
        self.conversations.insert(0, entry)
        return entry

    def _count_unread(self, entry: dict[str, Any], message_id: Any, *, counts: bool) -> None:
        if message_id is not None:
            if message_id in self.seen_message_ids:
                return
            self.seen_message_ids.add(message_id)
        if counts:
            entry["unreadCount"] = int(entry.get("unreadCount") or 0) + 1
            self.total_unread += 1

    def apply_message_update(self, message: Message) -> None:
        for index, existing in enumerate(self.current_messages):
            if existing["id"] == message.get("id"):
                self.current_messages[index] = message
                return

    def remove_message(self, message_id: int) -> None:
        self.current_messages = [item for item in self.current_messages if item["id"] != message_id]

    def apply_read_receipt(self, reader_id: int, conversation_id: str) -> None:
        if conversation_id != self.current_conversation_id:
            return
        for message in self.current_messages:
            if message.get("receiverId") == reader_id:
                message["isRead"] = True

    def apply_typing(self, sender_id: int, is_typing: bool) -> None:
        if self.counterpart is None or self.counterpart.get("id") != sender_id:
            return
        if is_typing:
            self.typing_user_ids.add(sender_id)
        else:
            self.typing_user_ids.discard(sender_id)

    def apply_presence(self, user_id: int, is_online: bool) -> None:
        if is_online:
            self.online_user_ids.add(user_id)
        else:
            self.online_user_ids.discard(user_id)
        for entry in self.conversations:
            other = entry.get("otherUser") or {}
            if other.get("id") == user_id:
                other["isOnline"] = is_online
        if self.counterpart is not None and self.counterpart.get("id") == user_id:
            self.counterpart["isOnline"] = is_online
