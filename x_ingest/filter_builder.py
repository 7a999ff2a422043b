from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Mapping

from .errors import ValidationError
from .query_filter import QueryFilter

STREAM_MODES = ("search", "fromUsers", "mentions", "hashtags", "advanced")
TRIGGER_MODES = ("newTweets", "mentions", "timeline")


def split_handles(value: Any) -> tuple[str, ...]:
    """
    Split a comma-separated string (or a list) into trimmed, unique entries.

    Order is preserved; duplicates are compared case-insensitively.
    """
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = []

    out: list[str] = []
    seen: set[str] = set()
    for item in items:
        term = (item or "").strip()
        if not term:
            continue
        key = term.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(term)
    return tuple(out)


def _required_text(raw: Mapping[str, Any], key: str, label: str) -> str:
    value = raw.get(key)
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"{label} required")
    return text


def _required_handles(raw: Mapping[str, Any], key: str, label: str) -> tuple[str, ...]:
    handles = split_handles(_required_text(raw, key, label))
    if not handles:
        raise ValidationError(f"{label} required")
    return handles


def _required_username(raw: Mapping[str, Any]) -> str:
    username = _required_text(raw, "username", "Username is").lstrip("@").strip()
    if not username:
        raise ValidationError("Username is required")
    return username


def _parse_timestamp(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"{field_name} is not an ISO 8601 date: {value!r}") from e

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_count(value: Any, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field_name} must be a number: {value!r}") from e


def _advanced_filter(options: Mapping[str, Any]) -> QueryFilter:
    # Falsy values (0, False, "") count as "not provided".
    values: dict[str, Any] = {}

    if options.get("include_phrase"):
        values["include_phrase"] = str(options["include_phrase"])
    if options.get("from_users"):
        values["from_users"] = split_handles(options["from_users"])
    if options.get("to_users"):
        values["to_users"] = split_handles(options["to_users"])
    if options.get("language"):
        values["language"] = str(options["language"]).strip()
    if options.get("start_date"):
        values["start_date"] = _parse_timestamp(options["start_date"], "start_date")
    if options.get("end_date"):
        values["end_date"] = _parse_timestamp(options["end_date"], "end_date")

    for name in ("min_replies", "min_retweets", "min_likes"):
        if options.get(name):
            values[name] = _parse_count(options[name], name)

    if options.get("top"):
        values["top"] = True

    return QueryFilter(**values)


def build_filter(mode: str, raw: Mapping[str, Any]) -> QueryFilter:
    """
    Build the canonical QueryFilter for a stream mode from raw user fields.

    Raises ValidationError when the mode is unknown or its required field is blank.
    """
    if mode == "search":
        _required_text(raw, "search_terms", "Search terms are")
        return QueryFilter(include_phrase=raw["search_terms"])

    if mode == "fromUsers":
        return QueryFilter(from_users=_required_handles(raw, "usernames", "Usernames are"))

    if mode == "mentions":
        handles = _required_handles(raw, "mention_users", "Mention users are")
        return QueryFilter(include_phrase=" OR ".join(f"@{h}" for h in handles))

    if mode == "hashtags":
        tags = _required_handles(raw, "hashtags", "Hashtags are")
        return QueryFilter(include_phrase=" OR ".join(f"#{t}" for t in tags))

    if mode == "advanced":
        options = raw.get("advanced_filter") or {}
        if not isinstance(options, Mapping):
            raise ValidationError("advanced_filter must be a mapping")
        return _advanced_filter(options)

    raise ValidationError(f"Unknown stream type: {mode!r}")


@dataclass(frozen=True)
class PollTarget:
    """What a poll cycle fetches: a search filter, or a user's timeline."""

    trigger_on: str
    filter: QueryFilter | None = None
    username: str | None = None


def build_poll_target(trigger_on: str, raw: Mapping[str, Any]) -> PollTarget:
    if trigger_on == "newTweets":
        query = _required_text(raw, "search_query", "Search query is")
        return PollTarget(trigger_on=trigger_on, filter=QueryFilter(include_phrase=query))

    if trigger_on == "mentions":
        username = _required_username(raw)
        return PollTarget(
            trigger_on=trigger_on,
            filter=QueryFilter(include_phrase=f"@{username}"),
            username=username,
        )

    if trigger_on == "timeline":
        username = _required_username(raw)
        return PollTarget(trigger_on=trigger_on, username=username)

    raise ValidationError(f"Unknown trigger mode: {trigger_on!r}")
