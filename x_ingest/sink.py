from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence, TextIO

from .feed_item import FeedItem
from .query_filter import QueryFilter

STREAM_START = "stream_start"
ERROR = "error"
STREAM_ERROR = "stream_error"
MANUAL_TRIGGER_ERROR = "manual_trigger_error"

Record = Mapping[str, Any]


class Sink(Protocol):
    """Receives one ordered batch of output records per call."""

    def emit(self, records: Sequence[Record]) -> None: ...


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def stream_start_record(query: QueryFilter) -> dict[str, Any]:
    return {
        "type": STREAM_START,
        "message": "X stream started",
        "filter": query.to_dict(),
        "timestamp": utc_timestamp(),
    }


def error_record(kind: str, exc: BaseException) -> dict[str, Any]:
    return {
        "type": kind,
        "error": str(exc) or type(exc).__name__,
        "timestamp": utc_timestamp(),
    }


def item_record(
    item: FeedItem,
    *,
    include_metadata: bool,
    stream_type: str,
    query: QueryFilter,
    manual: bool = False,
) -> dict[str, Any]:
    if not include_metadata:
        return item.to_record()

    metadata: dict[str, Any] = {
        "stream_type": stream_type,
        "filter": query.to_dict(),
        "received_at": utc_timestamp(),
    }
    if manual:
        metadata["is_manual_trigger"] = True

    return {"tweet": item.to_record(), "metadata": metadata}


class ListSink:
    """Keeps every emitted batch in memory."""

    def __init__(self) -> None:
        self.batches: list[list[dict[str, Any]]] = []

    def emit(self, records: Sequence[Record]) -> None:
        self.batches.append([dict(r) for r in records])

    @property
    def records(self) -> list[dict[str, Any]]:
        return [r for batch in self.batches for r in batch]


class JsonlSink:
    """Appends each record as one JSON line; flushed after every batch."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._fp: TextIO | None = None
        self.emitted = 0

    @classmethod
    def open(cls, path: str | Path) -> "JsonlSink":
        sink = cls(path)
        sink._ensure_open()
        return sink

    def close(self) -> None:
        if self._fp is not None:
            try:
                self._fp.flush()
            finally:
                self._fp.close()
            self._fp = None

    def __enter__(self) -> "JsonlSink":
        self._ensure_open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def emit(self, records: Sequence[Record]) -> None:
        fp = self._ensure_open()

        for record in records:
            payload = json.dumps(
                dict(record),
                ensure_ascii=False,
                sort_keys=True,
                separators=(",", ":"),
                default=str,
            )
            fp.write(payload + "\n")
            self.emitted += 1
        fp.flush()

    def _ensure_open(self) -> TextIO:
        if self._fp is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fp = self._path.open("a", encoding="utf-8", newline="\n")
        return self._fp
