"""Bounded TTL/LRU cache with optional durable backing.

Recency rules:

* ``set`` and a ``get`` hit both move the key to the most-recent end.
* ``has`` and ``keys`` never change the order.
* An entry is expired once ``now >= expires_at``; expired entries are purged
  whenever a lookup notices them.

The in-memory table is authoritative. Durable backing is best effort:
store failures are logged and passed to ``on_error`` but never block a
read or write.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .const import CACHE_KEY_PREFIX, DEFAULT_MAX_SIZE, DEFAULT_TTL
from .errors import StorageError, ValidationFailed
from .store import DurableStore

_LOGGER = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]
ErrorCallback = Callable[[Exception], None]


def wall_clock_ms() -> float:
    """Milliseconds since the Unix epoch.

    Durable entries outlive the process, so the default clock has to share
    an epoch across restarts.
    """
    return time.time() * 1000.0


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    created_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "created_at": self.created_at, "expires_at": self.expires_at}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CacheEntry[Any]:
        created = payload.get("created_at", payload.get("timestamp"))
        return cls(
            value=payload.get("value", payload.get("data")),
            created_at=float(created),
            expires_at=float(payload["expires_at"] if "expires_at" in payload else payload["expiresAt"]),
        )


class BoundedCache(Generic[V]):
    """Map keys to values with TTL expiry and LRU eviction."""

    def __init__(
        self,
        *,
        ttl: int = DEFAULT_TTL,
        max_size: int = DEFAULT_MAX_SIZE,
        store: DurableStore | None = None,
        validate: Callable[[V], bool] | None = None,
        fetcher: Callable[[str], Awaitable[V]] | None = None,
        on_error: ErrorCallback | None = None,
        serialize: Callable[[dict[str, Any]], str] | None = None,
        deserialize: Callable[[str], dict[str, Any]] | None = None,
        clock: Clock = wall_clock_ms,
        key_prefix: str = CACHE_KEY_PREFIX,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl = ttl
        self.max_size = max_size
        self._store = store
        self._validate = validate
        self._fetcher = fetcher
        self._on_error = on_error
        self._serialize = serialize or (lambda entry: json.dumps(entry, separators=(",", ":")))
        self._deserialize = deserialize or json.loads
        self._clock = clock
        self._prefix = key_prefix
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._lock = threading.RLock()
        self.last_error: Exception | None = None

    # ------------------------------------------------------------------
    def load(self) -> int:
        """Restore live entries from the durable store.

        Expired or invalid entries are deleted from the store. Returns the
        number of entries restored.
        """

        if self._store is None:
            return 0
        try:
            stored_keys = self._store.keys(self._prefix)
        except StorageError as err:
            self._report(err)
            return 0

        now = self._clock()
        restored: list[tuple[str, CacheEntry[V]]] = []
        for storage_key in stored_keys:
            key = storage_key[len(self._prefix) :]
            try:
                raw = self._store.get(storage_key)
                if raw is None:
                    continue
                entry = CacheEntry.from_dict(self._deserialize(raw))
            except StorageError as err:
                self._report(err)
                continue
            except (KeyError, TypeError, ValueError) as err:
                _LOGGER.debug("Dropping unreadable cache entry %s: %s", storage_key, err)
                self._discard_durable(key)
                continue
            if entry.expired(now) or not self._is_valid(entry.value):
                self._discard_durable(key)
                continue
            restored.append((key, entry))

        restored.sort(key=lambda item: item[1].created_at)
        with self._lock:
            for key, entry in restored:
                self._entries[key] = entry
                self._entries.move_to_end(key)
            self._enforce_size_limit()
            count = len(self._entries)
        _LOGGER.debug("Restored %d cache entries", count)
        return count

    # ------------------------------------------------------------------
    def set(self, key: str, value: V) -> bool:
        """Store ``value``. Returns False when the validator rejected it."""

        if not self._is_valid(value):
            self._report(ValidationFailed(f"cache value for {key!r} failed validation"))
            return False
        now = self._clock()
        entry = CacheEntry(value=value, created_at=now, expires_at=now + self.ttl)
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            self._enforce_size_limit()
            stored = key in self._entries
        if stored:
            self._write_durable(key, entry)
        return True

    def get(self, key: str, default: V | None = None) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if not entry.expired(self._clock()):
                self._entries.move_to_end(key)
                return entry.value
            del self._entries[key]
        self._discard_durable(key)
        return default

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if not entry.expired(self._clock()):
                return True
            del self._entries[key]
        self._discard_durable(key)
        return False

    __contains__ = has

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
        self._discard_durable(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        if self._store is None:
            return
        try:
            stored_keys = self._store.keys(self._prefix)
        except StorageError as err:
            self._report(err)
            return
        for storage_key in stored_keys:
            self._discard_durable(storage_key[len(self._prefix) :])

    def keys(self) -> list[str]:
        """Live keys, least recently used first."""

        now = self._clock()
        with self._lock:
            return [key for key, entry in self._entries.items() if not entry.expired(now)]

    def entry(self, key: str) -> CacheEntry[V] | None:
        """Return the raw entry without touching recency."""

        with self._lock:
            entry = self._entries.get(key)
        if entry is None or entry.expired(self._clock()):
            return None
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    async def refresh(self, key: str) -> V | None:
        """Fetch ``key`` through the configured fetcher and cache it."""

        if self._fetcher is None:
            raise RuntimeError("refresh requires a fetcher")
        try:
            value = await self._fetcher(key)
        except Exception as err:  # noqa: BLE001 - reported to the caller callback
            _LOGGER.warning("Cache refresh for %s failed: %s", key, err)
            self._report(err)
            return None
        if not self.set(key, value):
            return None
        return value

    async def get_or_refresh(self, key: str) -> V | None:
        cached = self.get(key)
        if cached is not None:
            return cached
        return await self.refresh(key)

    # ------------------------------------------------------------------
    def _enforce_size_limit(self) -> None:
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            _LOGGER.debug("Evicting least recently used cache key %s", evicted)
            self._discard_durable(evicted)

    def _is_valid(self, value: V) -> bool:
        if self._validate is None:
            return True
        try:
            return bool(self._validate(value))
        except Exception as err:  # noqa: BLE001 - validator errors count as rejection
            _LOGGER.debug("Cache validator raised %s", err)
            return False

    def _write_durable(self, key: str, entry: CacheEntry[V]) -> None:
        if self._store is None:
            return
        try:
            self._store.set(self._prefix + key, self._serialize(entry.to_dict()))
        except (StorageError, TypeError, ValueError) as err:
            self._report(err if isinstance(err, StorageError) else StorageError(f"cannot serialise {key!r}: {err}"))

    def _discard_durable(self, key: str) -> None:
        if self._store is None:
            return
        try:
            self._store.remove(self._prefix + key)
        except StorageError as err:
            self._report(err)

    def _report(self, err: Exception) -> None:
        self.last_error = err
        if isinstance(err, StorageError):
            _LOGGER.warning("Cache storage failure: %s", err)
        if self._on_error is None:
            return
        try:
            self._on_error(err)
        except Exception:  # pragma: no cover - defensive log
            _LOGGER.debug("Cache error callback raised", exc_info=True)


__all__ = ["BoundedCache", "CacheEntry", "wall_clock_ms"]
