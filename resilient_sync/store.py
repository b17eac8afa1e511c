"""Durable key/value store adapters.

Every adapter exposes the same four calls over string keys and string
values. Failures raise :class:`~resilient_sync.errors.StorageError`;
callers decide whether a failure is fatal.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import StorageError

_LOGGER = logging.getLogger(__name__)


class DurableStore(ABC):
    """String-keyed persistent medium."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value or ``None`` when absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Persist ``value`` under ``key``."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``; removing a missing key is not an error."""

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """Return every stored key starting with ``prefix``."""

    def close(self) -> None:  # pragma: no cover - optional hook
        return None


class MemoryStore(DurableStore):
    """Process-local store, handy for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"value for {key!r} must be a string")
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStore(DurableStore):
    """Single JSON document on disk, rewritten atomically on every change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as err:
            raise StorageError(f"unable to read {self.path}: {err}") from err
        if not isinstance(payload, dict):
            raise StorageError(f"{self.path} does not contain a JSON object")
        data = {str(key): value for key, value in payload.items() if isinstance(value, str)}
        _LOGGER.debug("Loaded %d keys from %s", len(data), self.path)
        return data

    def _flush(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as err:
            raise StorageError(f"unable to write {self.path}: {err}") from err

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"value for {key!r} must be a string")
        with self._lock:
            updated = {**self._data, key: value}
            self._flush(updated)
            self._data = updated

    def remove(self, key: str) -> None:
        with self._lock:
            if key not in self._data:
                return
            updated = {k: v for k, v in self._data.items() if k != key}
            self._flush(updated)
            self._data = updated

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [key for key in self._data if key.startswith(prefix)]


def open_store(path: str | Path | None) -> DurableStore:
    """Pick an adapter from a path: ``None``/``:memory:`` → memory,
    ``.json`` → :class:`JsonFileStore`, anything else → SQLite."""

    if path is None or str(path) == ":memory:":
        return MemoryStore()
    p = Path(path)
    if p.suffix.lower() == ".json":
        return JsonFileStore(p)
    from .sqlite_store import SqliteStore

    return SqliteStore(p)


__all__ = ["DurableStore", "JsonFileStore", "MemoryStore", "open_store"]
