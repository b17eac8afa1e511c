from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from .synchronizer import SyncState, SyncStatus, Synchronizer


class SyncGroup:
    """Aggregate view over several synchronizers."""

    def __init__(self, name: str, members: Iterable[Synchronizer[Any]] = ()) -> None:
        self.name = name
        self._members: dict[str, Synchronizer[Any]] = {}
        for member in members:
            self.add(member)

    def add(self, member: Synchronizer[Any]) -> None:
        self._members[member.key] = member

    def discard(self, key: str) -> None:
        self._members.pop(key, None)

    @property
    def members(self) -> tuple[Synchronizer[Any], ...]:
        return tuple(self._members.values())

    @property
    def is_syncing(self) -> bool:
        return any(member.is_syncing for member in self._members.values())

    @property
    def has_error(self) -> bool:
        return any(member.status is SyncStatus.ERROR for member in self._members.values())

    @property
    def last_synced_at(self) -> datetime | None:
        stamps = [member.state.last_synced_at for member in self._members.values()]
        present = [stamp for stamp in stamps if stamp is not None]
        return max(present) if present else None

    async def force_sync(self) -> dict[str, SyncState[Any] | None]:
        """Force every member to sync concurrently; returns results by key."""

        keys = list(self._members)
        results = await asyncio.gather(*(self._members[key].force_sync() for key in keys))
        return dict(zip(keys, results, strict=True))

    def __len__(self) -> int:
        return len(self._members)


__all__ = ["SyncGroup"]
