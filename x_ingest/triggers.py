from __future__ import annotations

import asyncio
from typing import Union

from .config_schema import StreamConfig, TriggerConfig
from .cursor import Cursor, StateStore
from .feed_item import FeedItem
from .filter_builder import build_filter, build_poll_target
from .poll_loop import PollLoop, make_fetcher
from .provider import Provider
from .run_log import RunLogger
from .sink import Sink
from .stream_consumer import StreamConsumer

Runner = Union[PollLoop, StreamConsumer]


class TriggerActivation:
    """
    A started trigger.

    `close()` is the bounded shutdown path; `manual_trigger()` runs one extra
    fetch-and-emit without touching the running loop.
    """

    def __init__(self, runner: Runner, mode: str) -> None:
        self._runner = runner
        self._mode = mode
        self._closed = False

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def runner(self) -> Runner:
        return self._runner

    @property
    def task(self) -> asyncio.Task[None]:
        task = self._runner.task
        if task is None:
            raise RuntimeError("trigger has not been started")
        return task

    async def wait(self) -> None:
        await self.task

    async def manual_trigger(self) -> list[FeedItem]:
        return await self._runner.run_manual()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._runner.stop()


def activate_poll_trigger(
    config: TriggerConfig,
    *,
    provider: Provider,
    store: StateStore,
    sink: Sink,
    scope: str,
    logger: RunLogger | None = None,
    start: bool = True,
) -> TriggerActivation:
    """
    Validate the poll trigger fields and start its loop on the running event loop.

    Raises ValidationError before anything is scheduled.
    """
    target = build_poll_target(config.trigger_on, config.model_dump())

    loop = PollLoop(
        make_fetcher(provider, target),
        cursor=Cursor(store, scope),
        sink=sink,
        interval_seconds=config.poll_interval,
        max_results=config.max_results,
        logger=logger,
    )
    if start:
        loop.start()
    return TriggerActivation(loop, mode="poll")


def activate_stream_trigger(
    config: StreamConfig,
    *,
    provider: Provider,
    sink: Sink,
    logger: RunLogger | None = None,
    start: bool = True,
) -> TriggerActivation:
    query = build_filter(config.stream_type, config.model_dump())

    consumer = StreamConsumer(
        provider,
        query,
        sink=sink,
        stream_type=config.stream_type,
        interval_ms=config.polling_interval,
        include_metadata=config.options.include_metadata,
        include_start_message=config.options.include_start_message,
        logger=logger,
    )
    if start:
        consumer.start()
    return TriggerActivation(consumer, mode="stream")
