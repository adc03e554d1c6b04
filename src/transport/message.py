"""Envelope for one payload travelling through a delivery channel."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any
from uuid import uuid4


def new_message_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class Message:
    id: str
    topic: str
    payload: bytes
    metadata: dict[str, Any] = field(default_factory=dict)
    attempt: int = 1

    def redelivery(self) -> Message:
        """Copy of this message for its next delivery attempt."""
        return replace(self, attempt=self.attempt + 1)


__all__ = ["Message", "new_message_id"]
