"""Naming of conversations and realtime rooms.

Every place that needs the identifier of a two-party conversation or the
name of a user's personal room goes through these helpers so REST handlers,
the websocket gateway and the client agree on the exact strings.
"""

from __future__ import annotations

from typing import Union

UserId = Union[int, str]

PERSONAL_ROOM_PREFIX = "user-"


def conversation_key(first: UserId, second: UserId) -> str:
    """Return the direction independent key for a pair of users.

    Ids are compared as strings, so ``conversation_key(10, 9)`` is ``"10-9"``.
    """

    left, right = sorted((str(first), str(second)))
    return f"{left}-{right}"


def personal_room(user_id: UserId) -> str:
    return f"{PERSONAL_ROOM_PREFIX}{user_id}"

