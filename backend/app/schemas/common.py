"""Shared schema helpers and response envelopes."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON while keeping snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_payload(self) -> dict:
        """Dump the model the way it travels over the wire."""

        return self.model_dump(mode="json", by_alias=True)


class Envelope(CamelModel, Generic[T]):
    """Successful response carrying a payload."""

    success: bool = True
    data: T


class MessageEnvelope(CamelModel, Generic[T]):
    """Successful response carrying a payload and a human readable message."""

    success: bool = True
    message: str
    data: T


class StatusMessage(CamelModel):
    """Response carrying only an outcome and a message."""

    success: bool = True
    message: str


class UnreadCount(CamelModel):
    unread_count: int
