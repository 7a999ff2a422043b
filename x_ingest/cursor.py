from __future__ import annotations

from typing import Protocol


class StateStore(Protocol):
    """Key/value state scoped to one workflow instance."""

    def get_state(self, scope: str, key: str) -> str | None: ...

    def set_state(self, scope: str, key: str, value: str | None) -> None: ...


class MemoryStateStore:
    """Process-local state store, used by tests and one-off runs."""

    def __init__(self) -> None:
        self._values: dict[tuple[str, str], str] = {}

    def get_state(self, scope: str, key: str) -> str | None:
        return self._values.get((scope, key))

    def set_state(self, scope: str, key: str, value: str | None) -> None:
        if value is None:
            self._values.pop((scope, key), None)
            return
        self._values[(scope, key)] = value


class Cursor:
    """
    The id of the newest item a poll loop has handed to its sink.

    Read at the start of each poll cycle, written only after a successful emit.
    After a crash between emit and write, the next cycle may re-deliver items.
    """

    KEY = "lastProcessedId"

    def __init__(self, store: StateStore, scope: str) -> None:
        s = (scope or "").strip()
        if not s:
            raise ValueError("scope must be non-empty")
        self._store = store
        self._scope = s

    @property
    def scope(self) -> str:
        return self._scope

    def load(self) -> str | None:
        return self._store.get_state(self._scope, self.KEY)

    def advance(self, item_id: str) -> None:
        value = (item_id or "").strip()
        if not value:
            raise ValueError("item_id must be non-empty")
        self._store.set_state(self._scope, self.KEY, value)

    def reset(self) -> None:
        self._store.set_state(self._scope, self.KEY, None)
