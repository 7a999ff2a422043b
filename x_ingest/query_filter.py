from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Sequence


def _search_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d_%H:%M:%S_UTC")


def _quoted(phrase: str) -> str | None:
    # X search has no escape for a double quote inside a phrase.
    text = phrase.replace('"', "").strip()
    return f'"{text}"' if text else None


def _any_of(prefix: str, values: Sequence[str]) -> str:
    terms = [f"{prefix}{v}" for v in values]
    if len(terms) == 1:
        return terms[0]
    return "(" + " OR ".join(terms) + ")"


@dataclass(frozen=True)
class QueryFilter:
    """
    Canonical tweet query. Every field is optional; None means unconstrained.

    Built once per activation and never mutated afterwards.
    """

    include_phrase: str | None = None
    from_users: tuple[str, ...] | None = None
    to_users: tuple[str, ...] | None = None
    language: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    min_replies: int | None = None
    min_retweets: int | None = None
    min_likes: int | None = None
    top: bool | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view used in marker and metadata records."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, tuple):
                value = list(value)
            out[f.name] = value
        return out

    def to_search_query(self) -> str:
        """
        Render the filter as an X advanced search query.

        The phrase is quoted, so an OR-joined mention/hashtag phrase is matched
        literally by the search backend.
        """
        parts: list[str] = []
        phrase = _quoted(self.include_phrase or "")
        if phrase:
            parts.append(phrase)
        if self.from_users:
            parts.append(_any_of("from:", self.from_users))
        if self.to_users:
            parts.append(_any_of("to:", self.to_users))
        if self.language:
            parts.append(f"lang:{self.language}")
        if self.start_date is not None:
            parts.append(f"since:{_search_time(self.start_date)}")
        if self.end_date is not None:
            parts.append(f"until:{_search_time(self.end_date)}")
        if self.min_replies:
            parts.append(f"min_replies:{self.min_replies}")
        if self.min_retweets:
            parts.append(f"min_retweets:{self.min_retweets}")
        if self.min_likes:
            parts.append(f"min_faves:{self.min_likes}")
        return " ".join(parts)
