from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from .feed_item import FeedItem, UserRecord
from .normalize import feed_items_from_raw, newest_first
from .provider import StreamSession, poll_search_stream
from .query_filter import QueryFilter


def _tweet(tweet_id: int, text: str, created_at: str) -> dict[str, Any]:
    return {
        "type": "tweet",
        "id": str(tweet_id),
        "url": f"https://x.com/offline/status/{tweet_id}",
        "text": text,
        "createdAt": created_at,
        "lang": "en",
        "author": {"userName": "offline", "id": "42"},
    }


_DEFAULT_OFFLINE_ITEMS: list[dict[str, Any]] = [
    _tweet(1001, "Shipping a new workflow today. #automation", "Mon Jan 06 09:00:00 +0000 2025"),
    _tweet(1002, "Polling beats guessing. #n8n", "Mon Jan 06 09:05:00 +0000 2025"),
    _tweet(1003, "Cursor-based dedupe keeps the feed clean.", "Mon Jan 06 09:10:00 +0000 2025"),
    _tweet(1004, "Streams end; triggers should not crash. #automation", "Mon Jan 06 09:15:00 +0000 2025"),
    _tweet(1005, "Oldest first, always. #n8n", "Mon Jan 06 09:20:00 +0000 2025"),
    _tweet(1006, "Shutdown should not wait for the next tick.", "Mon Jan 06 09:25:00 +0000 2025"),
]


@dataclass
class OfflineTweetProvider:
    """
    Network-free provider for CLI smoke runs.

    The canned posts "arrive" over time: the first search sees `initial_visible`
    posts and every later call one more, so poll and stream modes both emit
    something new for a few cycles.
    """

    items: Sequence[dict[str, Any]] = tuple(_DEFAULT_OFFLINE_ITEMS)
    initial_visible: int = 3
    calls: int = field(default=0, init=False)

    def _visible(self, limit: int) -> list[FeedItem]:
        shown = min(len(self.items), self.initial_visible + self.calls)
        self.calls += 1
        batch = newest_first(feed_items_from_raw(self.items[:shown]))
        return batch[: max(0, int(limit))]

    async def search(self, query: QueryFilter, limit: int) -> list[FeedItem]:
        _ = query
        return self._visible(limit)

    async def user_details(self, handle: str) -> UserRecord | None:
        name = (handle or "").strip().lstrip("@")
        if not name:
            return None
        return UserRecord(id="42", username=name, raw={"id": "42", "userName": name})

    async def timeline(self, user_id: str, limit: int) -> list[FeedItem]:
        _ = user_id
        return self._visible(limit)

    def stream(self, query: QueryFilter, interval_ms: int) -> StreamSession:
        return StreamSession(poll_search_stream(self.search, query, interval_ms))
