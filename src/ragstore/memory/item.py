"""Memory item model, id generation and item filters."""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LEN = 9


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def new_item_id(type: str, timestamp: int) -> str:
    """Build an id of the form ``{type}_{timestamp}_{suffix}``.

    The random base-36 suffix keeps ids distinct within one millisecond.
    """
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LEN))
    return f"{type}_{timestamp}_{suffix}"


@dataclass(frozen=True)
class MemoryItem:
    """A single immutable stored note."""

    id: str
    content: str
    type: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    @classmethod
    def create(
        cls,
        content: str,
        type: str,
        metadata: dict[str, Any] | None = None,
        timestamp: int | None = None,
    ) -> MemoryItem:
        ts = now_ms() if timestamp is None else timestamp
        return cls(
            id=new_item_id(type, ts),
            content=content,
            type=type,
            metadata=dict(metadata or {}),
            timestamp=ts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "type": self.type,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryItem:
        """Rebuild an item from a stored record. Raises KeyError/TypeError on bad shape."""
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            type=str(data["type"]),
            metadata=dict(data.get("metadata") or {}),
            timestamp=int(data["timestamp"]),
        )


@dataclass(frozen=True)
class ItemFilter:
    """Equality filter on ``type`` and lower bound on ``timestamp``.

    Evaluated in Python by the file store scan and translated into a
    native predicate by the primary index.
    """

    type: str | None = None
    min_timestamp: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.type is None and self.min_timestamp is None

    def matches(self, item: MemoryItem) -> bool:
        if self.type is not None and item.type != self.type:
            return False
        if self.min_timestamp is not None and item.timestamp < self.min_timestamp:
            return False
        return True
