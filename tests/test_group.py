from __future__ import annotations

import pytest
from conftest import FlakyRemote

from resilient_sync.group import SyncGroup
from resilient_sync.synchronizer import SyncStatus, Synchronizer


def member(store, key: str, remote: FlakyRemote) -> Synchronizer:
    return Synchronizer(
        key,
        initial_data={},
        store=store,
        fetch=remote.fetch,
        push=remote.push,
        sync_interval=0,
        retry_attempts=1,
        retry_delay=0,
    )


@pytest.mark.asyncio
async def test_group_aggregates_members(store) -> None:
    good = member(store, "plants", FlakyRemote({"n": 1}))
    bad = member(store, "zones", FlakyRemote({"n": 2}, fetch_failures=5))
    group = SyncGroup("garden", [good, bad])

    assert len(group) == 2
    assert group.last_synced_at is None
    assert not group.is_syncing

    results = await group.force_sync()

    assert results["plants"].status is SyncStatus.SUCCESS
    assert results["zones"].status is SyncStatus.ERROR
    assert group.has_error
    assert group.last_synced_at == good.state.last_synced_at

    group.discard("zones")
    assert not group.has_error
