from __future__ import annotations

from typing import Any, Iterable, Mapping

from .feed_item import FeedItem, UserRecord


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_id(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        v = value.strip()
        return v if v else None
    if isinstance(value, int):
        return str(value)
    return None


def feed_item_from_raw(item: Mapping[str, Any]) -> FeedItem | None:
    """
    Best-effort extraction of the id and creation time from a provider item.

    Returns None when the item carries no usable id.
    """
    item_id = (
        _coerce_id(item.get("id"))
        or _coerce_id(item.get("id_str"))
        or _coerce_id(item.get("tweetId"))
        or _coerce_id(item.get("rest_id"))
    )
    if not item_id:
        return None

    created_at = (
        _coerce_str(item.get("createdAt"))
        or _coerce_str(item.get("created_at"))
        or _coerce_str(item.get("timestamp"))
    )

    return FeedItem(id=item_id, created_at=created_at, raw=dict(item))


def feed_items_from_raw(items: Iterable[Mapping[str, Any]]) -> list[FeedItem]:
    out: list[FeedItem] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        parsed = feed_item_from_raw(item)
        if parsed is not None:
            out.append(parsed)
    return out


def user_record_from_raw(item: Mapping[str, Any]) -> UserRecord | None:
    user_id = _coerce_id(item.get("id")) or _coerce_id(item.get("rest_id")) or _coerce_id(item.get("userId"))
    username = (
        _coerce_str(item.get("userName"))
        or _coerce_str(item.get("username"))
        or _coerce_str(item.get("screen_name"))
    )
    if not user_id or not username:
        return None
    return UserRecord(id=user_id, username=username, raw=dict(item))


def _snowflake(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def newest_first(items: list[FeedItem]) -> list[FeedItem]:
    """
    Order a batch newest-first by numeric post id.

    Batches whose ids are not all numeric keep the order the provider returned.
    """
    keys = [_snowflake(i.id) for i in items]
    if any(k is None for k in keys):
        return list(items)
    paired = sorted(zip(keys, range(len(items))), key=lambda p: (-p[0], p[1]))
    return [items[idx] for _, idx in paired]
