"""User lookup consumed by the messaging services."""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.models import User
from app.schemas import PublicUser
from app.services.presence import PresenceRegistry


def serialize_public_user(user: User, *, is_online: bool = False) -> PublicUser:
    return PublicUser(
        id=user.id,
        name=user.name,
        profile_pic=user.profile_pic,
        is_online=is_online,
    )


class UserDirectory:
    """Resolves users by id inside the caller's session."""

    def __init__(self, presence: PresenceRegistry | None = None) -> None:
        self._presence = presence

    def get(self, db: Session, user_id: int, *, active_only: bool = False) -> User | None:
        user = db.get(User, user_id)
        if user is None:
            return None
        if active_only and not user.is_active:
            return None
        return user

    def is_online(self, user_id: int) -> bool:
        if self._presence is None:
            return False
        return self._presence.is_online(user_id)

    def public(self, user: User) -> PublicUser:
        return serialize_public_user(user, is_online=self.is_online(user.id))
