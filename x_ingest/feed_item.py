from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class FeedItem:
    """A fetched post: a stable id plus the raw provider record, passed through untouched."""

    id: str
    created_at: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def to_record(self) -> dict[str, Any]:
        record = dict(self.raw)
        record.setdefault("id", self.id)
        return record


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: str
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)
