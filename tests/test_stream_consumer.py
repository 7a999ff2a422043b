from __future__ import annotations

import asyncio
import io
import json
import unittest
from typing import Any, AsyncIterator, Callable, Sequence

from x_ingest.errors import FetchError
from x_ingest.feed_item import FeedItem, UserRecord
from x_ingest.provider import StreamSession
from x_ingest.query_filter import QueryFilter
from x_ingest.run_log import RunLogger
from x_ingest.sink import ListSink
from x_ingest.stream_consumer import StreamConsumer


def _item(item_id: str) -> FeedItem:
    return FeedItem(id=item_id, raw={"id": item_id, "text": f"t{item_id}"})


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class _StreamProvider:
    def __init__(
        self,
        source: Callable[[], AsyncIterator[FeedItem]],
        *,
        search_result: list[FeedItem] | Exception | None = None,
    ) -> None:
        self._source = source
        self._search_result = search_result
        self.stream_calls: list[tuple[QueryFilter, int]] = []
        self.search_calls: list[tuple[QueryFilter, int]] = []

    def stream(self, query: QueryFilter, interval_ms: int) -> StreamSession:
        self.stream_calls.append((query, interval_ms))
        return StreamSession(self._source())

    async def search(self, query: QueryFilter, limit: int) -> list[FeedItem]:
        self.search_calls.append((query, limit))
        if isinstance(self._search_result, Exception):
            raise self._search_result
        return list(self._search_result or [])

    async def user_details(self, handle: str) -> UserRecord | None:
        return None

    async def timeline(self, user_id: str, limit: int) -> list[FeedItem]:
        return []


class _StubbornSource:
    """Never yields and refuses to be released."""

    def __init__(self) -> None:
        self.close_attempts = 0

    def __aiter__(self) -> "_StubbornSource":
        return self

    async def __anext__(self) -> FeedItem:
        await asyncio.Event().wait()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.close_attempts += 1
        raise RuntimeError("connection already torn down")


class _PickySink(ListSink):
    def __init__(self, reject_ids: Sequence[str]) -> None:
        super().__init__()
        self._reject = set(reject_ids)

    def emit(self, records: Sequence[Any]) -> None:
        for r in records:
            if r.get("id") in self._reject:
                raise ValueError(f"cannot serialize {r['id']}")
        super().emit(records)


class TestStreamConsumer(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.sink = ListSink()
        self.query = QueryFilter(include_phrase="#n8n OR #automation")
        self.log_stream = io.StringIO()
        self.logger = RunLogger.to_stream(self.log_stream)

    def _consumer(self, provider: _StreamProvider, **kwargs: Any) -> StreamConsumer:
        params: dict[str, Any] = {
            "sink": self.sink,
            "stream_type": "hashtags",
            "interval_ms": 250,
            "include_start_message": False,
            "logger": self.logger,
        }
        params.update(kwargs)
        return StreamConsumer(provider, self.query, **params)  # type: ignore[arg-type]

    def _events(self) -> list[str]:
        return [json.loads(line)["event"] for line in self.log_stream.getvalue().splitlines() if line.strip()]

    async def test_provider_failure_ends_stream_with_one_error_record(self) -> None:

        async def source() -> AsyncIterator[FeedItem]:
            yield _item("1")
            yield _item("2")
            raise FetchError("rate limited upstream")
            yield _item("3")  # pragma: no cover

        provider = _StreamProvider(source)
        consumer = self._consumer(provider)

        await consumer.run()

        records = self.sink.records
        self.assertEqual([r.get("id") for r in records[:2]], ["1", "2"])
        self.assertEqual(len(records), 3)
        self.assertEqual(records[2]["type"], "stream_error")
        self.assertEqual(records[2]["error"], "rate limited upstream")
        self.assertFalse(consumer.active)
        self.assertEqual(provider.stream_calls, [(self.query, 250)])
        self.assertIn("stream_failed", self._events())

    async def test_start_marker_precedes_items(self) -> None:
        async def source() -> AsyncIterator[FeedItem]:
            yield _item("1")

        consumer = self._consumer(_StreamProvider(source), include_start_message=True)
        await consumer.run()

        records = self.sink.records
        self.assertEqual(records[0]["type"], "stream_start")
        self.assertEqual(records[0]["filter"], {"include_phrase": "#n8n OR #automation"})
        self.assertEqual(records[1]["id"], "1")
        self.assertEqual(len(records), 2)

    async def test_each_item_is_its_own_batch(self) -> None:
        async def source() -> AsyncIterator[FeedItem]:
            for i in ("1", "2", "3"):
                yield _item(i)

        consumer = self._consumer(_StreamProvider(source))
        await consumer.run()

        self.assertEqual([[r["id"] for r in b] for b in self.sink.batches], [["1"], ["2"], ["3"]])
        self.assertEqual(consumer.forwarded, 3)

    async def test_metadata_wrapper(self) -> None:
        async def source() -> AsyncIterator[FeedItem]:
            yield _item("7")

        consumer = self._consumer(_StreamProvider(source), include_metadata=True)
        await consumer.run()

        record = self.sink.records[0]
        self.assertEqual(record["tweet"], {"id": "7", "text": "t7"})
        self.assertEqual(record["metadata"]["stream_type"], "hashtags")
        self.assertEqual(record["metadata"]["filter"], {"include_phrase": "#n8n OR #automation"})
        self.assertIn("received_at", record["metadata"])
        self.assertNotIn("is_manual_trigger", record["metadata"])

    async def test_item_failure_is_reported_and_stream_continues(self) -> None:
        async def source() -> AsyncIterator[FeedItem]:
            yield _item("1")
            yield _item("2")

        self.sink = _PickySink(reject_ids=["1"])
        consumer = self._consumer(_StreamProvider(source))
        await consumer.run()

        records = self.sink.records
        self.assertEqual(records[0]["type"], "error")
        self.assertEqual(records[1]["id"], "2")
        self.assertIn("stream_item_failed", self._events())

    async def test_stop_releases_session_promptly(self) -> None:
        released = asyncio.Event()

        async def source() -> AsyncIterator[FeedItem]:
            try:
                yield _item("1")
                await asyncio.Event().wait()
                yield _item("never")  # pragma: no cover
            finally:
                released.set()

        consumer = self._consumer(_StreamProvider(source))
        consumer.start()
        await _wait_until(lambda: consumer.forwarded == 1)

        await asyncio.wait_for(consumer.stop(), timeout=1.0)

        self.assertTrue(released.is_set())
        self.assertFalse(consumer.active)
        self.assertTrue(consumer.task is not None and consumer.task.done())
        self.assertEqual([r.get("type") for r in self.sink.records], [None])

    async def test_release_error_is_logged_not_raised(self) -> None:
        stubborn = _StubbornSource()
        consumer = self._consumer(_StreamProvider(lambda: stubborn))  # type: ignore[arg-type, return-value]
        consumer.start()
        await _wait_until(lambda: "stream_started" in self._events())

        await asyncio.wait_for(consumer.stop(), timeout=1.0)

        self.assertEqual(stubborn.close_attempts, 1)
        self.assertIn("stream_release_failed", self._events())
        self.assertEqual(self.sink.records, [])

    async def test_stream_end_is_not_an_error(self) -> None:
        async def source() -> AsyncIterator[FeedItem]:
            if False:  # pragma: no cover
                yield _item("x")

        consumer = self._consumer(_StreamProvider(source))
        await consumer.run()

        self.assertEqual(self.sink.records, [])
        self.assertNotIn("stream_failed", self._events())

    async def test_manual_trigger_searches_five_with_metadata(self) -> None:
        async def source() -> AsyncIterator[FeedItem]:
            if False:  # pragma: no cover
                yield _item("x")

        provider = _StreamProvider(source, search_result=[_item("3"), _item("2")])
        consumer = self._consumer(provider, include_metadata=True)

        items = await consumer.run_manual()

        self.assertEqual([i.id for i in items], ["3", "2"])
        self.assertEqual(provider.search_calls, [(self.query, 5)])
        self.assertEqual(len(self.sink.batches), 2)
        self.assertTrue(all(r["metadata"]["is_manual_trigger"] for r in self.sink.records))
        self.assertEqual(provider.stream_calls, [])

    async def test_manual_trigger_failure(self) -> None:
        async def source() -> AsyncIterator[FeedItem]:
            if False:  # pragma: no cover
                yield _item("x")

        provider = _StreamProvider(source, search_result=FetchError("search failed"))
        consumer = self._consumer(provider)

        self.assertEqual(await consumer.run_manual(), [])
        self.assertEqual(self.sink.records[0]["type"], "manual_trigger_error")


if __name__ == "__main__":
    unittest.main()
