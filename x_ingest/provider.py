from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Protocol

from .dedupe import dedupe
from .errors import ReleaseError
from .feed_item import FeedItem, UserRecord
from .query_filter import QueryFilter

SearchFn = Callable[[QueryFilter, int], Awaitable[list[FeedItem]]]


class StreamSession:
    """
    One open provider stream.

    Wraps exactly one async iterator; `aclose()` releases it and is safe to call twice.
    """

    def __init__(self, source: AsyncIterator[FeedItem]) -> None:
        self._source = source
        self._closed = False

    def __aiter__(self) -> "StreamSession":
        return self

    async def __anext__(self) -> FeedItem:
        if self._closed:
            raise StopAsyncIteration
        return await self._source.__anext__()

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True

        closer = getattr(self._source, "aclose", None)
        if closer is None:
            return
        try:
            await closer()
        except Exception as e:
            raise ReleaseError(f"Failed to release stream session: {e}") from e


class Provider(Protocol):
    """
    Search/stream/timeline source for X posts.

    Batches are returned newest-first.
    """

    async def search(self, query: QueryFilter, limit: int) -> list[FeedItem]: ...

    def stream(self, query: QueryFilter, interval_ms: int) -> StreamSession: ...

    async def user_details(self, handle: str) -> UserRecord | None: ...

    async def timeline(self, user_id: str, limit: int) -> list[FeedItem]: ...


async def poll_search_stream(
    search: SearchFn,
    query: QueryFilter,
    interval_ms: int,
    *,
    page_size: int = 20,
    started_at: datetime | None = None,
) -> AsyncIterator[FeedItem]:
    """
    Turn repeated searches into an unbounded stream of new posts, oldest first.

    Posts older than the stream start are excluded unless the filter sets its own
    start date. Each round waits `interval_ms` before searching.
    """
    if interval_ms < 0:
        raise ValueError("interval_ms must be >= 0")

    if query.start_date is None:
        start = started_at or datetime.now(timezone.utc)
        query = dataclasses.replace(query, start_date=start)

    latest: str | None = None
    while True:
        await asyncio.sleep(interval_ms / 1000.0)

        batch = await search(query, page_size)
        for item in dedupe(batch, latest):
            yield item

        if batch:
            latest = batch[0].id
