"""Persistence and retrieval of direct messages."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Mapping

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.config import Settings, get_settings
from app.core.conversation import conversation_key
from app.core.errors import ForbiddenError, NotFoundError, ValidationError
from app.database import Database
from app.models import Message, MessageAttachment, MessageType
from app.monitoring.metrics import chat_messages_created_total
from app.schemas import AttachmentIn, AttachmentRead, ConversationPage, MessageRead, PublicUser
from app.services.notifications import NotificationBridge
from app.services.users import UserDirectory

logger = logging.getLogger(__name__)

_LIKE_ESCAPE = "\\"


def serialize_message(message: Message, *, sender: PublicUser | None = None) -> MessageRead:
    return MessageRead(
        id=message.id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        sender=sender,
        content=message.content,
        message_type=message.message_type,
        attachments=[
            AttachmentRead(id=item.id, url=item.url, filename=item.filename, size=item.size)
            for item in message.attachments
        ],
        conversation_id=message.conversation_key,
        reply_to=message.reply_to_id,
        client_message_id=message.client_message_id,
        is_read=message.is_read,
        read_at=message.read_at,
        is_edited=message.is_edited,
        edited_at=message.edited_at,
        is_deleted=message.is_deleted,
        deleted_at=message.deleted_at,
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def _escape_like(value: str) -> str:
    return (
        value.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", f"{_LIKE_ESCAPE}%")
        .replace("_", f"{_LIKE_ESCAPE}_")
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageStore:
    """Owns every read and write of ``Message`` rows.

    Each public method opens its own short-lived session. Creating a message
    always triggers the notification bridge for the receiver.
    """

    def __init__(
        self,
        database: Database,
        users: UserDirectory,
        notifications: NotificationBridge,
        settings: Settings | None = None,
    ) -> None:
        self._database = database
        self._users = users
        self._notifications = notifications
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def _clean_content(self, content: Any) -> str:
        text = str(content or "").strip()
        if not text:
            raise ValidationError("Message content cannot be empty")
        limit = self._settings.chat_message_max_length
        if len(text) > limit:
            raise ValidationError(f"Message cannot be longer than {limit} characters")
        return text

    @staticmethod
    def _parse_type(message_type: MessageType | str | None) -> MessageType:
        if message_type is None:
            return MessageType.TEXT
        try:
            return MessageType(message_type)
        except ValueError:
            raise ValidationError(f"Unsupported message type '{message_type}'") from None

    @staticmethod
    def _parse_attachments(
        attachments: Iterable[AttachmentIn | Mapping[str, Any]] | None,
    ) -> list[AttachmentIn]:
        parsed: list[AttachmentIn] = []
        for item in attachments or ():
            if isinstance(item, AttachmentIn):
                parsed.append(item)
                continue
            try:
                parsed.append(AttachmentIn.model_validate(item))
            except ValueError as exc:
                raise ValidationError("Invalid attachment") from exc
        return parsed

    def _load(self, db: Session, message_id: int) -> Message | None:
        stmt = (
            select(Message)
            .where(Message.id == message_id)
            .options(selectinload(Message.attachments), selectinload(Message.sender))
        )
        return db.execute(stmt).scalar_one_or_none()

    def _find_by_client_id(self, db: Session, sender_id: int, client_message_id: str) -> Message | None:
        stmt = (
            select(Message)
            .where(Message.sender_id == sender_id, Message.client_message_id == client_message_id)
            .options(selectinload(Message.attachments), selectinload(Message.sender))
        )
        return db.execute(stmt).scalar_one_or_none()

    def _serialize(self, message: Message) -> MessageRead:
        sender = self._users.public(message.sender) if message.sender is not None else None
        return serialize_message(message, sender=sender)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(
        self,
        sender_id: int,
        receiver_id: int,
        content: str,
        message_type: MessageType | str = MessageType.TEXT,
        attachments: Iterable[AttachmentIn | Mapping[str, Any]] | None = None,
        reply_to: int | None = None,
        client_message_id: str | None = None,
        *,
        origin: str = "api",
    ) -> MessageRead:
        """Persist a message from *sender_id* to *receiver_id*.

        A repeated ``client_message_id`` from the same sender returns the
        already stored message and does not notify the receiver again.
        """

        text = self._clean_content(content)
        kind = self._parse_type(message_type)
        files = self._parse_attachments(attachments)
        if sender_id == receiver_id:
            raise ValidationError("You cannot send a message to yourself")
        key = conversation_key(sender_id, receiver_id)

        with self._database.session() as db:
            receiver = self._users.get(db, receiver_id, active_only=True)
            if receiver is None:
                raise NotFoundError("Receiver not found")
            sender = self._users.get(db, sender_id)
            if sender is None:
                raise NotFoundError("Sender not found")

            if client_message_id:
                existing = self._find_by_client_id(db, sender_id, client_message_id)
                if existing is not None:
                    logger.debug(
                        "Duplicate send ignored",
                        extra={"message_id": existing.id, "client_message_id": client_message_id},
                    )
                    return self._serialize(existing)

            if reply_to is not None:
                parent = db.get(Message, reply_to)
                if parent is None or parent.is_deleted:
                    raise NotFoundError("Replied message not found")
                if parent.conversation_key != key:
                    raise ValidationError("Replies must stay within the same conversation")

            message = Message(
                sender_id=sender_id,
                receiver_id=receiver_id,
                conversation_key=key,
                content=text,
                message_type=kind,
                reply_to_id=reply_to,
                client_message_id=client_message_id or None,
                is_read=False,
            )
            message.attachments = [
                MessageAttachment(url=item.url, filename=item.filename, size=item.size) for item in files
            ]
            db.add(message)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                if client_message_id:
                    existing = self._find_by_client_id(db, sender_id, client_message_id)
                    if existing is not None:
                        return self._serialize(existing)
                raise
            payload = serialize_message(message, sender=self._users.public(sender))
            sender_name = sender.name

        chat_messages_created_total.labels(origin).inc()
        logger.info(
            "Message stored",
            extra={"message_id": payload.id, "conversation_id": key, "origin": origin},
        )
        self._notifications.message_created(payload, sender_name=sender_name)
        return payload

    def mark_read(self, other_user_id: int, user_id: int) -> int:
        """Mark every unread message from *other_user_id* to *user_id* as read."""

        with self._database.session() as db:
            changed = self._mark_read(db, other_user_id, user_id)
            db.commit()
        return changed

    @staticmethod
    def _mark_read(db: Session, other_user_id: int, user_id: int) -> int:
        stmt = (
            update(Message)
            .where(
                Message.sender_id == other_user_id,
                Message.receiver_id == user_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True, read_at=_utcnow())
            .execution_options(synchronize_session="fetch")
        )
        result = db.execute(stmt)
        return result.rowcount or 0

    def soft_delete(self, message_id: int, user_id: int) -> MessageRead:
        with self._database.session() as db:
            message = self._load(db, message_id)
            if message is None:
                raise NotFoundError("Message not found")
            if not message.involves(user_id):
                raise ForbiddenError("You can only delete your own messages")
            if not message.is_deleted:
                message.is_deleted = True
                message.deleted_at = _utcnow()
                db.commit()
            return self._serialize(message)

    def edit(self, message_id: int, user_id: int, content: str) -> MessageRead:
        text = self._clean_content(content)
        with self._database.session() as db:
            message = self._load(db, message_id)
            if message is None or message.is_deleted:
                raise NotFoundError("Message not found")
            if message.sender_id != user_id:
                raise ForbiddenError("You can only edit your own messages")
            if message.content != text:
                message.content = text
                message.is_edited = True
                message.edited_at = _utcnow()
                db.commit()
            return self._serialize(message)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @contextmanager
    def conversation_fetch(
        self,
        user_id: int,
        other_user_id: int,
        page: int = 1,
        page_size: int | None = None,
    ) -> Iterator[ConversationPage]:
        """Load a conversation page and mark the other user's messages read.

        The read-state change is committed only when the ``with`` block exits
        normally; an exception inside the block rolls it back.
        """

        page = max(int(page), 1)
        size = page_size or self._settings.chat_history_default_limit
        size = min(max(int(size), 1), self._settings.chat_history_max_limit)
        key = conversation_key(user_id, other_user_id)

        with self._database.session() as db:
            other = self._users.get(db, other_user_id)
            if other is None:
                raise NotFoundError("User not found")

            stmt = (
                select(Message)
                .where(Message.conversation_key == key, Message.is_deleted.is_(False))
                .options(selectinload(Message.attachments), selectinload(Message.sender))
                .order_by(Message.created_at.desc(), Message.id.desc())
                .offset((page - 1) * size)
                .limit(size)
            )
            rows = list(db.execute(stmt).scalars())
            rows.reverse()

            changed = self._mark_read(db, other_user_id, user_id)
            result = ConversationPage(
                messages=[self._serialize(row) for row in rows],
                other_user=self._users.public(other),
                page=page,
                limit=size,
            )
            try:
                yield result
            except BaseException:
                db.rollback()
                logger.info(
                    "Conversation fetch aborted; read state left unchanged",
                    extra={"conversation_id": key, "user_id": user_id},
                )
                raise
            db.commit()
            if changed:
                logger.debug("Marked %s messages read", changed, extra={"conversation_id": key})

    def get_conversation(
        self,
        user_id: int,
        other_user_id: int,
        page: int = 1,
        page_size: int | None = None,
    ) -> ConversationPage:
        with self.conversation_fetch(user_id, other_user_id, page, page_size) as result:
            return result

    def get_unread_count(self, user_id: int) -> int:
        stmt = select(func.count(Message.id)).where(
            Message.receiver_id == user_id,
            Message.is_read.is_(False),
            Message.is_deleted.is_(False),
        )
        with self._database.session() as db:
            return int(db.execute(stmt).scalar_one())

    def counterpart_ids(self, user_id: int) -> set[int]:
        """Ids of every user that shares a conversation with *user_id*."""

        stmt = (
            select(Message.sender_id, Message.receiver_id)
            .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .distinct()
        )
        with self._database.session() as db:
            rows = db.execute(stmt).all()
        return {receiver if sender == user_id else sender for sender, receiver in rows}

    def get_message(self, message_id: int) -> MessageRead:
        with self._database.session() as db:
            message = self._load(db, message_id)
            if message is None:
                raise NotFoundError("Message not found")
            return self._serialize(message)

    def search(
        self,
        user_id: int,
        query: str,
        other_user_id: int | None = None,
        limit: int | None = None,
    ) -> list[MessageRead]:
        """Case-insensitive substring search over the user's messages, newest first."""

        needle = (query or "").strip()
        if not needle:
            raise ValidationError("Search query is required")
        cap = self._settings.chat_search_limit
        limit = min(max(limit or cap, 1), cap)

        stmt = select(Message).where(
            Message.content.ilike(f"%{_escape_like(needle)}%", escape=_LIKE_ESCAPE),
            Message.is_deleted.is_(False),
        )
        if other_user_id is not None:
            stmt = stmt.where(Message.conversation_key == conversation_key(user_id, other_user_id))
        else:
            stmt = stmt.where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
        stmt = (
            stmt.options(selectinload(Message.attachments), selectinload(Message.sender))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        with self._database.session() as db:
            return [self._serialize(row) for row in db.execute(stmt).scalars()]
