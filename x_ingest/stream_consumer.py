from __future__ import annotations

import asyncio

from .errors import ReleaseError
from .feed_item import FeedItem
from .provider import Provider, StreamSession
from .query_filter import QueryFilter
from .run_log import RunLogger
from .sink import (
    ERROR,
    MANUAL_TRIGGER_ERROR,
    STREAM_ERROR,
    Sink,
    error_record,
    item_record,
    stream_start_record,
)

MANUAL_SEARCH_LIMIT = 5


class StreamConsumer:
    """
    Forwards every item of one provider stream session to the sink.

    A provider failure ends consumption with a single stream_error record; the
    activation has to be restarted to resume. `stop()` releases the session and
    never raises.
    """

    def __init__(
        self,
        provider: Provider,
        query: QueryFilter,
        *,
        sink: Sink,
        stream_type: str,
        interval_ms: int,
        include_metadata: bool = False,
        include_start_message: bool = True,
        logger: RunLogger | None = None,
    ) -> None:
        self._provider = provider
        self._query = query
        self._sink = sink
        self._stream_type = stream_type
        self._interval_ms = int(interval_ms)
        self._include_metadata = bool(include_metadata)
        self._include_start_message = bool(include_start_message)
        self._log = logger or RunLogger.to_stream()

        self._active = True
        self._session: StreamSession | None = None
        self._task: asyncio.Task[None] | None = None
        self.forwarded = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> asyncio.Task[None]:
        if self._task is not None:
            raise RuntimeError("stream consumer already started")
        self._task = asyncio.create_task(self.run())
        return self._task

    async def run(self) -> None:
        try:
            if self._include_start_message:
                self._sink.emit([stream_start_record(self._query)])

            self._session = self._provider.stream(self._query, self._interval_ms)
            self._log.info(
                "stream_started",
                stream_type=self._stream_type,
                filter=self._query.to_dict(),
                interval_ms=self._interval_ms,
            )

            async for item in self._session:
                if not self._active:
                    break
                self._forward(item)
        except Exception as e:
            self._log.exception("stream_failed", exc=e, forwarded=self.forwarded)
            self._report(STREAM_ERROR, e)
        finally:
            self._active = False
            await self._release()

    async def run_manual(self) -> list[FeedItem]:
        """One-off search with the stream's filter; each result is emitted on its own."""
        try:
            items = await self._provider.search(self._query, MANUAL_SEARCH_LIMIT)
            for item in items:
                record = item_record(
                    item,
                    include_metadata=self._include_metadata,
                    stream_type=self._stream_type,
                    query=self._query,
                    manual=True,
                )
                self._sink.emit([record])
        except Exception as e:
            self._log.exception("manual_trigger_failed", exc=e)
            self._report(MANUAL_TRIGGER_ERROR, e)
            return []

        self._log.info("manual_trigger_completed", fetched=len(items))
        return items

    async def stop(self) -> None:
        self._active = False

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._release()

    def _forward(self, item: FeedItem) -> None:
        try:
            record = item_record(
                item,
                include_metadata=self._include_metadata,
                stream_type=self._stream_type,
                query=self._query,
            )
            self._sink.emit([record])
            self.forwarded += 1
        except Exception as e:
            self._log.exception("stream_item_failed", exc=e, item_id=item.id)
            self._report(ERROR, e)

    async def _release(self) -> None:
        session = self._session
        if session is None or session.closed:
            return
        try:
            await session.aclose()
        except ReleaseError as e:
            self._log.exception("stream_release_failed", exc=e)
        else:
            self._log.info("stream_released", forwarded=self.forwarded)

    def _report(self, kind: str, exc: BaseException) -> None:
        try:
            self._sink.emit([error_record(kind, exc)])
        except Exception as e:
            self._log.exception("sink_emit_failed", exc=e, record_type=kind)
