"""Unit tests for conversation and room naming."""

from __future__ import annotations

import pytest

from app.core.conversation import conversation_key, personal_room


@pytest.mark.parametrize(
    ("first", "second", "expected"),
    [
        (1, 2, "1-2"),
        (2, 1, "1-2"),
        (10, 9, "10-9"),
        ("7", 3, "3-7"),
    ],
)
def test_conversation_key_is_direction_independent(first, second, expected):
    assert conversation_key(first, second) == expected
    assert conversation_key(second, first) == expected


def test_personal_room_naming():
    assert personal_room(42) == "user-42"

