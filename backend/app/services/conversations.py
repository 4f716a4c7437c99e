"""Per-user conversation list derived from stored messages."""

from __future__ import annotations

from sqlalchemy import func, or_, select

from app.database import Database
from app.models import Message, User
from app.schemas import ConversationView, LastMessage
from app.services.users import UserDirectory


class ConversationAggregator:
    """Builds the conversation list of a user on demand; nothing is cached."""

    def __init__(self, database: Database, users: UserDirectory) -> None:
        self._database = database
        self._users = users

    def list_conversations(self, user_id: int) -> list[ConversationView]:
        """Return one entry per conversation, most recently active first."""

        ranked = (
            select(
                Message.id.label("message_id"),
                func.row_number()
                .over(
                    partition_by=Message.conversation_key,
                    order_by=(Message.created_at.desc(), Message.id.desc()),
                )
                .label("position"),
            )
            .where(
                or_(Message.sender_id == user_id, Message.receiver_id == user_id),
                Message.is_deleted.is_(False),
            )
            .subquery()
        )
        unread = (
            select(
                Message.conversation_key.label("conversation_key"),
                func.count(Message.id).label("unread_count"),
            )
            .where(
                Message.receiver_id == user_id,
                Message.is_read.is_(False),
                Message.is_deleted.is_(False),
            )
            .group_by(Message.conversation_key)
            .subquery()
        )
        stmt = (
            select(Message, func.coalesce(unread.c.unread_count, 0))
            .join(ranked, ranked.c.message_id == Message.id)
            .outerjoin(unread, unread.c.conversation_key == Message.conversation_key)
            .where(ranked.c.position == 1)
            .order_by(Message.created_at.desc(), Message.id.desc())
        )

        with self._database.session() as db:
            rows = db.execute(stmt).all()
            other_ids = {
                message.receiver_id if message.sender_id == user_id else message.sender_id
                for message, _ in rows
            }
            others: dict[int, User] = {}
            if other_ids:
                others = {
                    user.id: user
                    for user in db.execute(select(User).where(User.id.in_(other_ids))).scalars()
                }

            conversations: list[ConversationView] = []
            for message, unread_count in rows:
                other_id = message.receiver_id if message.sender_id == user_id else message.sender_id
                other = others.get(other_id)
                if other is None:
                    continue
                conversations.append(
                    ConversationView(
                        conversation_id=message.conversation_key,
                        other_user=self._users.public(other),
                        last_message=LastMessage(
                            id=message.id,
                            sender_id=message.sender_id,
                            content=message.content,
                            message_type=message.message_type,
                            is_read=message.is_read,
                            created_at=message.created_at,
                        ),
                        unread_count=int(unread_count or 0),
                    )
                )
        return conversations
