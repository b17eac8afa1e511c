"""Durable, append-only log of local mutations awaiting a push."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .const import PENDING_CHANGES_SUFFIX
from .errors import StorageError
from .store import DurableStore

_LOGGER = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True)
class PendingChange:
    """A locally applied mutation not yet confirmed by the remote source."""

    payload: dict[str, Any]
    kind: ChangeKind = ChangeKind.UPDATE
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "payload": self.payload, "kind": self.kind.value}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> PendingChange:
        body = payload.get("payload", payload.get("data"))
        kind_raw = payload.get("kind", payload.get("type", ChangeKind.UPDATE.value))
        return cls(
            payload=dict(body) if isinstance(body, Mapping) else {},
            kind=ChangeKind(str(kind_raw)),
            timestamp=int(payload.get("timestamp", 0)),
        )


def pending_storage_key(resource_key: str) -> str:
    return f"{resource_key}{PENDING_CHANGES_SUFFIX}"


class PendingLog:
    """Ordered pending changes for one resource.

    The in-memory list is authoritative for the running process; every
    mutation is written through to the store so the log survives a
    restart. Store failures go to ``on_error`` and do not lose the
    in-memory entries.
    """

    def __init__(
        self,
        store: DurableStore,
        resource_key: str,
        *,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self._store = store
        self.storage_key = pending_storage_key(resource_key)
        self._on_error = on_error
        self._changes: list[PendingChange] = self._load()

    def _load(self) -> list[PendingChange]:
        try:
            raw = self._store.get(self.storage_key)
        except StorageError as err:
            self._report(err)
            return []
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError as err:
            _LOGGER.warning("Discarding unreadable pending log %s: %s", self.storage_key, err)
            return []
        if not isinstance(items, list):
            return []
        changes: list[PendingChange] = []
        for item in items:
            if not isinstance(item, Mapping):
                continue
            try:
                changes.append(PendingChange.from_dict(item))
            except (TypeError, ValueError) as err:
                _LOGGER.warning("Skipping malformed pending change in %s: %s", self.storage_key, err)
        if changes:
            _LOGGER.debug("Loaded %d pending changes from %s", len(changes), self.storage_key)
        return changes

    def _persist(self) -> None:
        try:
            if self._changes:
                encoded = json.dumps([change.to_dict() for change in self._changes], separators=(",", ":"))
                self._store.set(self.storage_key, encoded)
            else:
                self._store.remove(self.storage_key)
        except StorageError as err:
            self._report(err)
        except (TypeError, ValueError) as err:
            self._report(StorageError(f"cannot serialise pending changes: {err}"))

    def _report(self, err: Exception) -> None:
        _LOGGER.warning("Pending log %s storage failure: %s", self.storage_key, err)
        if self._on_error is not None:
            self._on_error(err)

    # ------------------------------------------------------------------
    def append(self, change: PendingChange) -> None:
        self._changes.append(change)
        self._persist()

    def entries(self) -> tuple[PendingChange, ...]:
        return tuple(self._changes)

    def discard(self, count: int) -> None:
        """Drop the oldest ``count`` changes (the ones a push just confirmed)."""

        if count <= 0:
            return
        del self._changes[:count]
        self._persist()

    def clear(self) -> None:
        self._changes.clear()
        self._persist()

    def __len__(self) -> int:
        return len(self._changes)

    def __bool__(self) -> bool:
        return bool(self._changes)


__all__ = ["ChangeKind", "PendingChange", "PendingLog", "pending_storage_key"]
