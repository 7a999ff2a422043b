from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .errors import StorageError
from .storage_schema import initialize_sqlite


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _required(value: str | None, name: str) -> str:
    v = (value or "").strip()
    if not v:
        raise ValueError(f"{name} must be non-empty")
    return v


@dataclass(frozen=True)
class ActivationRecord:
    activation_id: str
    scope: str
    mode: str
    started_at: str
    ended_at: str | None
    config_hash: str


class SQLiteStateStore:
    """
    Durable trigger state: per-scope key/value pairs (the poll cursor) and activation history.

    Implements the StateStore protocol, so it can back a Cursor directly.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row

    @classmethod
    def open(cls, path: str | Path) -> "SQLiteStateStore":
        db_path = str(path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except Exception as e:
            conn.close()
            raise StorageError(f"Failed to initialize sqlite schema: {e}") from e

        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteStateStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def get_state(self, scope: str, key: str) -> str | None:
        s = _required(scope, "scope")
        k = _required(key, "key")

        try:
            row = self._conn.execute(
                "SELECT value FROM trigger_state WHERE scope = ? AND key = ?",
                (s, k),
            ).fetchone()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to read state {s}/{k}: {e}") from e

        if row is None:
            return None
        return str(row["value"])

    def set_state(self, scope: str, key: str, value: str | None) -> None:
        s = _required(scope, "scope")
        k = _required(key, "key")

        try:
            with self._conn:
                if value is None:
                    self._conn.execute(
                        "DELETE FROM trigger_state WHERE scope = ? AND key = ?",
                        (s, k),
                    )
                    return

                self._conn.execute(
                    """
                    INSERT INTO trigger_state(scope, key, value, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(scope, key) DO UPDATE SET
                      value = excluded.value,
                      updated_at = excluded.updated_at
                    """.strip(),
                    (s, k, str(value), _utc_now_iso()),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to write state {s}/{k}: {e}") from e

    def create_activation(
        self,
        *,
        scope: str,
        mode: str,
        config_hash: str,
        activation_id: str | None = None,
        started_at: str | None = None,
    ) -> ActivationRecord:
        aid = _required(activation_id or uuid.uuid4().hex, "activation_id")
        s = _required(scope, "scope")
        m = _required(mode, "mode")
        cfg_hash = _required(config_hash, "config_hash")
        start = (started_at or _utc_now_iso()).strip()

        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT OR IGNORE INTO activations(
                      activation_id, scope, mode, started_at, ended_at, config_hash
                    ) VALUES (?, ?, ?, ?, NULL, ?)
                    """.strip(),
                    (aid, s, m, start, cfg_hash),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to create activation record: {e}") from e

        record = self.get_activation(aid)
        if record is None:
            raise StorageError("Failed to read activation record after insert")
        return record

    def finish_activation(self, activation_id: str, *, ended_at: str | None = None) -> None:
        aid = _required(activation_id, "activation_id")
        end = (ended_at or _utc_now_iso()).strip()

        try:
            with self._conn:
                self._conn.execute(
                    "UPDATE activations SET ended_at = ? WHERE activation_id = ?",
                    (end, aid),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to finish activation: {e}") from e

    def get_activation(self, activation_id: str) -> ActivationRecord | None:
        aid = _required(activation_id, "activation_id")

        row = self._conn.execute(
            "SELECT activation_id, scope, mode, started_at, ended_at, config_hash FROM activations WHERE activation_id = ?",
            (aid,),
        ).fetchone()
        if row is None:
            return None

        return ActivationRecord(
            activation_id=str(row["activation_id"]),
            scope=str(row["scope"]),
            mode=str(row["mode"]),
            started_at=str(row["started_at"]),
            ended_at=str(row["ended_at"]) if row["ended_at"] is not None else None,
            config_hash=str(row["config_hash"]),
        )
