from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from .errors import StorageError
from .store import DurableStore


class SqliteStore(DurableStore):
    """SQLite-backed key/value store for pending changes and cache entries."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._is_memory = str(self.path) == ":memory:"
        if not self._is_memory:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._shared_conn: sqlite3.Connection | None = None
        self._ensure_schema()

    # ------------------------------------------------------------------
    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            if self._is_memory:
                if self._shared_conn is None:
                    self._shared_conn = sqlite3.connect(":memory:")
                    self._shared_conn.row_factory = sqlite3.Row
                yield self._shared_conn
            else:
                conn = sqlite3.connect(self.path)
                conn.row_factory = sqlite3.Row
                try:
                    yield conn
                finally:
                    conn.close()
        except sqlite3.Error as err:
            raise StorageError(f"sqlite store {self.path} failed: {err}") from err

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            conn.commit()

    # ------------------------------------------------------------------
    def get(self, key: str) -> str | None:
        with self._connection() as conn:
            row = conn.execute("SELECT value FROM kv_entries WHERE key = ?", (key,)).fetchone()
        if not row:
            return None
        return row["value"]

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"value for {key!r} must be a string")
        with self._connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO kv_entries(key, value, updated_at)
                VALUES(?, ?, ?)
                """,
                (key, value, datetime.now(tz=UTC).isoformat()),
            )
            conn.commit()

    def remove(self, key: str) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
            conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        # substr() instead of LIKE so '%' and '_' in prefixes match literally
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT key FROM kv_entries WHERE substr(key, 1, ?) = ? ORDER BY key ASC",
                (len(prefix), prefix),
            ).fetchall()
        return [row["key"] for row in rows]

    # ------------------------------------------------------------------
    def count(self, prefix: str = "") -> int:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM kv_entries WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            ).fetchone()
        if not row:
            return 0
        total = row["total"]
        return int(total) if total is not None else 0

    def updated_at(self, key: str) -> datetime | None:
        with self._connection() as conn:
            row = conn.execute("SELECT updated_at FROM kv_entries WHERE key = ?", (key,)).fetchone()
        if not row:
            return None
        return self._parse_timestamp(str(row["updated_at"]))

    def close(self) -> None:
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None

    def _parse_timestamp(self, value: str) -> datetime | None:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        return ts.astimezone(UTC)


__all__ = ["SqliteStore"]
