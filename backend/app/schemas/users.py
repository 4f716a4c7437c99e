"""Schemas describing users as other participants see them."""

from __future__ import annotations

from .common import CamelModel


class PublicUser(CamelModel):
    """Minimal public-facing user information."""

    id: int
    name: str
    profile_pic: str | None = None
    is_online: bool = False
