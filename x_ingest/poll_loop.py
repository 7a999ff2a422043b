from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from .cursor import Cursor
from .dedupe import dedupe
from .errors import FetchError
from .feed_item import FeedItem
from .filter_builder import PollTarget
from .provider import Provider
from .run_log import RunLogger
from .sink import ERROR, MANUAL_TRIGGER_ERROR, Sink, error_record

FetchFn = Callable[[int], Awaitable[list[FeedItem]]]

IDLE = "idle"
POLLING = "polling"
SLEEPING = "sleeping"
STOPPED = "stopped"


def make_fetcher(provider: Provider, target: PollTarget) -> FetchFn:
    """Bind a poll target to the provider call that fetches one newest-first batch."""

    async def fetch(limit: int) -> list[FeedItem]:
        if target.filter is not None:
            return await provider.search(target.filter, limit)

        username = target.username or ""
        user = await provider.user_details(username)
        if user is None:
            raise FetchError(f"User not found: {username}")
        return await provider.timeline(user.id, limit)

    return fetch


@dataclass(frozen=True)
class CycleResult:
    fetched: int
    emitted: int
    cursor: str | None


class PollLoop:
    """
    Fixed-interval fetch loop: idle -> polling -> sleeping -> polling ... -> stopped.

    The first fetch happens immediately. A failed cycle is logged, reported to the
    sink as an error record and retried on the next tick with the cursor unchanged.
    `stop()` wakes any sleep at once and returns after the loop task has ended.
    """

    def __init__(
        self,
        fetch: FetchFn,
        *,
        cursor: Cursor,
        sink: Sink,
        interval_seconds: float,
        max_results: int,
        logger: RunLogger | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if max_results <= 0:
            raise ValueError("max_results must be positive")

        self._fetch = fetch
        self._cursor = cursor
        self._sink = sink
        self._interval = float(interval_seconds)
        self._max_results = int(max_results)
        self._log = logger or RunLogger.to_stream()

        self._state = IDLE
        self._active = True
        self._wake = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.cycles = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> asyncio.Task[None]:
        if self._task is not None:
            raise RuntimeError("poll loop already started")
        self._task = asyncio.create_task(self.run())
        return self._task

    async def run(self) -> None:
        if self._state != IDLE:
            raise RuntimeError(f"poll loop cannot run from state={self._state}")

        try:
            while self._active:
                self._state = POLLING
                await self.poll_once()
                if not self._active:
                    break

                self._state = SLEEPING
                await self._sleep()
        finally:
            self._state = STOPPED
            self._log.info("poll_loop_stopped", cycles=self.cycles)

    async def poll_once(self) -> CycleResult | None:
        """
        One fetch-and-emit cycle against the stored cursor.

        Returns None when the cycle failed or the loop was stopped mid-fetch.
        """
        try:
            last_id = self._cursor.load()
            batch = await self._fetch(self._max_results)
            if not self._active:
                return None

            fresh = dedupe(batch, last_id)
            if fresh:
                self._sink.emit([item.to_record() for item in fresh])
                last_id = fresh[-1].id
                self._cursor.advance(last_id)
        except Exception as e:
            self._log.exception("poll_cycle_failed", exc=e, cycle=self.cycles + 1)
            self._report(ERROR, e)
            return None
        finally:
            self.cycles += 1

        self._log.info(
            "poll_cycle_completed",
            cycle=self.cycles,
            fetched=len(batch),
            emitted=len(fresh),
            cursor=last_id,
        )
        return CycleResult(fetched=len(batch), emitted=len(fresh), cursor=last_id)

    async def run_manual(self) -> list[FeedItem]:
        """
        Fetch and emit one batch without reading or writing the cursor.

        Returns the batch as fetched (newest-first); the sink receives it oldest-first.
        """
        try:
            batch = await self._fetch(self._max_results)
            if batch:
                self._sink.emit([item.to_record() for item in reversed(batch)])
        except Exception as e:
            self._log.exception("manual_trigger_failed", exc=e)
            self._report(MANUAL_TRIGGER_ERROR, e)
            return []

        self._log.info("manual_trigger_completed", fetched=len(batch))
        return batch

    async def stop(self) -> None:
        self._active = False
        self._wake.set()

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            # Only the fetch and the sleep can be pending here; both are safe to cancel.
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if task is None or task.done():
            self._state = STOPPED

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            pass

    def _report(self, kind: str, exc: BaseException) -> None:
        try:
            self._sink.emit([error_record(kind, exc)])
        except Exception as e:
            self._log.exception("sink_emit_failed", exc=e, record_type=kind)
