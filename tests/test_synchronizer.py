from __future__ import annotations

import asyncio

import pytest
from conftest import FlakyRemote, wait_for

from resilient_sync.cache import BoundedCache
from resilient_sync.errors import FetchFailed, PushFailed, SyncError, ValidationFailed
from resilient_sync.network import NetworkMonitor
from resilient_sync.pending import ChangeKind
from resilient_sync.synchronizer import SyncStatus, Synchronizer


def make_sync(store, remote: FlakyRemote | None = None, **kwargs) -> Synchronizer:
    kwargs.setdefault("initial_data", {"count": 0})
    kwargs.setdefault("sync_interval", 0)
    kwargs.setdefault("retry_delay", 0)
    if remote is not None:
        kwargs.setdefault("fetch", remote.fetch)
        kwargs.setdefault("push", remote.push)
    return Synchronizer("counter", store=store, **kwargs)


def test_initial_state(store) -> None:
    sync = make_sync(store)
    state = sync.state
    assert state.status is SyncStatus.IDLE
    assert state.data == {"count": 0}
    assert state.last_synced_at is None
    assert state.error is None


def test_update_applies_immediately_and_logs(store) -> None:
    sync = make_sync(store)
    assert sync.update({"count": 1}) == {"count": 1}
    sync.update({"count": 2})
    assert sync.data == {"count": 2}
    assert [change.payload for change in sync.pending_changes()] == [{"count": 1}, {"count": 2}]


def test_returned_data_is_a_copy(store) -> None:
    sync = make_sync(store, initial_data={"items": [1]})
    sync.data["items"].append(2)
    sync.state.data["items"].append(3)
    assert sync.data == {"items": [1]}


def test_update_rejected_by_validator(store) -> None:
    sync = make_sync(store, validate=lambda data: data["count"] >= 0)
    with pytest.raises(ValidationFailed):
        sync.update({"count": -1})
    assert sync.data == {"count": 0}
    assert sync.pending_changes() == ()


def test_remove_fields_records_delete(store) -> None:
    sync = make_sync(store, initial_data={"a": 1, "b": 2})
    assert sync.remove_fields("b") == {"a": 1}
    change = sync.pending_changes()[0]
    assert change.kind is ChangeKind.DELETE


def test_pending_log_survives_restart(store) -> None:
    make_sync(store).update({"count": 5})
    restarted = make_sync(store)
    assert [change.payload for change in restarted.pending_changes()] == [{"count": 5}]


@pytest.mark.asyncio
async def test_offline_update_then_sync_end_to_end(store) -> None:
    network = NetworkMonitor(online=False)
    remote = FlakyRemote({"count": 0, "extra": "x"})
    sync = make_sync(store, remote, network=network)

    sync.update({"count": 1})
    assert sync.data["count"] == 1
    assert len(sync.pending_changes()) == 1
    assert await sync.sync() is None
    assert remote.fetch_calls == 0

    network.set_online(True)
    state = await sync.sync()

    assert state is not None
    assert state.data == {"count": 1, "extra": "x"}
    assert state.status is SyncStatus.SUCCESS
    assert state.last_synced_at is not None
    assert sync.pending_changes() == ()
    assert remote.pushed == [{"count": 1, "extra": "x"}]


@pytest.mark.asyncio
async def test_push_failure_preserves_pending_log(store) -> None:
    errors: list[Exception] = []
    remote = FlakyRemote({"count": 0}, push_failures=10)
    sync = make_sync(store, remote, retry_attempts=2, on_error=errors.append)
    sync.update({"count": 1})
    sync.update({"label": "a"})

    state = await sync.sync()

    assert state.status is SyncStatus.ERROR
    assert isinstance(state.error, PushFailed)
    assert state.error.attempts == 2
    assert remote.push_calls == 2
    assert [change.payload for change in sync.pending_changes()] == [{"count": 1}, {"label": "a"}]
    assert errors == [state.error]

    remote.push_failures = 0
    state = await sync.sync()
    assert state.status is SyncStatus.SUCCESS
    assert state.error is None
    assert sync.pending_changes() == ()
    assert remote.data == {"count": 1, "label": "a"}


@pytest.mark.asyncio
async def test_fetch_failure_reports_fetch_failed(store) -> None:
    remote = FlakyRemote({"count": 0}, fetch_failures=3)
    sync = make_sync(store, remote, retry_attempts=3)
    sync.update({"count": 1})
    state = await sync.sync()
    assert isinstance(state.error, FetchFailed)
    assert remote.fetch_calls == 3
    assert remote.push_calls == 0
    assert state.data == {"count": 1}
    assert len(sync.pending_changes()) == 1


@pytest.mark.asyncio
async def test_fetch_recovers_within_retry_budget(store) -> None:
    remote = FlakyRemote({"count": 7}, fetch_failures=2)
    sync = make_sync(store, remote, retry_attempts=3)
    state = await sync.sync()
    assert state.status is SyncStatus.SUCCESS
    assert state.data == {"count": 7}
    assert remote.push_calls == 0


@pytest.mark.asyncio
async def test_merged_result_rejected_is_hard_failure(store) -> None:
    remote = FlakyRemote({"count": -5})
    sync = make_sync(store, remote, validate=lambda data: data["count"] >= 0)
    sync.update({"label": "x"})
    state = await sync.sync()
    assert isinstance(state.error, ValidationFailed)
    assert remote.push_calls == 0
    assert len(sync.pending_changes()) == 1


@pytest.mark.asyncio
async def test_repeated_sync_is_idempotent(store) -> None:
    remote = FlakyRemote({"count": 0, "extra": "x"})
    sync = make_sync(store, remote, push=None)
    sync.update({"count": 3})
    first = await sync.sync()
    second = await sync.sync()
    assert first.data == second.data == {"count": 3, "extra": "x"}
    assert len(sync.pending_changes()) == 1

    pushing = make_sync(store.__class__(), FlakyRemote({"count": 0}))
    pushing.update({"count": 2})
    assert (await pushing.sync()).data == {"count": 2}
    assert (await pushing.sync()).data == {"count": 2}


@pytest.mark.asyncio
async def test_sync_without_fetch_is_noop(store) -> None:
    sync = make_sync(store)
    sync.update({"count": 1})
    assert await sync.sync() is None
    assert sync.status is SyncStatus.IDLE


@pytest.mark.asyncio
async def test_concurrent_sync_is_dropped(store) -> None:
    gate = asyncio.Event()
    remote = FlakyRemote({"count": 0})

    async def slow_fetch():
        await gate.wait()
        return await remote.fetch()

    sync = make_sync(store, remote, fetch=slow_fetch)
    sync.update({"count": 1})
    running = asyncio.create_task(sync.sync())
    await wait_for(lambda: sync.is_syncing)

    assert await sync.sync() is None
    sync.update({"late": True})

    gate.set()
    state = await running
    assert remote.fetch_calls == 1
    assert remote.pushed == [{"count": 1}]
    assert state.data == {"count": 1, "late": True}
    assert [change.payload for change in sync.pending_changes()] == [{"late": True}]


@pytest.mark.asyncio
async def test_remove_fields_applied_on_remote(store) -> None:
    remote = FlakyRemote({"a": 0, "b": 5})
    sync = make_sync(store, remote, initial_data={"a": 1, "b": 2})
    sync.remove_fields("b")
    state = await sync.sync()
    assert state.data == {"a": 0}
    assert remote.pushed == [{"a": 0}]


@pytest.mark.asyncio
async def test_success_side_effects(store, clock) -> None:
    cache = BoundedCache(ttl=1_000, max_size=5, clock=clock)
    synced: list[dict] = []
    metrics: list[tuple[str, float, dict]] = []
    remote = FlakyRemote({"count": 0})
    sync = make_sync(
        store,
        remote,
        cache=cache,
        on_sync=synced.append,
        metrics=lambda name, value, tags: metrics.append((name, value, dict(tags))),
    )
    sync.update({"count": 4})
    await sync.sync()
    assert cache.get("counter") == {"count": 4}
    assert synced == [{"count": 4}]
    names = [name for name, _, _ in metrics]
    assert "sync.success" in names
    assert "sync.duration_ms" in names
    assert ("sync.pending", 0.0, {"resource": "counter"}) in metrics


@pytest.mark.asyncio
async def test_unexpected_merge_error_becomes_sync_error(store) -> None:
    def picky_merge(base, changes):
        if "remote" in base:
            raise KeyError("cannot merge remote data")
        return {**base, **changes}

    sync = make_sync(store, FlakyRemote({"remote": True}), merge=picky_merge)
    sync.update({"count": 1})
    state = await sync.sync()
    assert state.status is SyncStatus.ERROR
    assert type(state.error) is SyncError
    assert state.error.reason == "unexpected"
    assert len(sync.pending_changes()) == 1


@pytest.mark.asyncio
async def test_back_online_triggers_sync(store) -> None:
    network = NetworkMonitor(online=False)
    remote = FlakyRemote({"count": 0})
    sync = make_sync(store, remote, network=network)
    sync.start()
    try:
        network.set_online(False)
        sync.update({"count": 1})
        network.set_online(True)
        await wait_for(lambda: sync.status is SyncStatus.SUCCESS)
        assert remote.pushed == [{"count": 1}]
    finally:
        await sync.stop()


@pytest.mark.asyncio
async def test_back_online_without_pending_does_not_sync(store) -> None:
    network = NetworkMonitor(online=False)
    remote = FlakyRemote({"count": 0})
    sync = make_sync(store, remote, network=network)
    sync.start()
    network.set_online(True)
    await asyncio.sleep(0.02)
    assert remote.fetch_calls == 0
    await sync.stop()


@pytest.mark.asyncio
async def test_periodic_sync_runs(store) -> None:
    remote = FlakyRemote({"count": 0})
    sync = make_sync(store, remote, sync_interval=10)
    sync.start()
    try:
        await wait_for(lambda: remote.fetch_calls >= 2)
    finally:
        await sync.stop()
    assert not sync.running


@pytest.mark.asyncio
async def test_force_sync_runs_now_and_reschedules(store) -> None:
    remote = FlakyRemote({"count": 9})
    sync = make_sync(store, remote, sync_interval=60_000)
    sync.start()
    try:
        state = await sync.force_sync()
        assert state.data == {"count": 9}
        assert remote.fetch_calls == 1
        assert sync.running
    finally:
        await sync.stop()


@pytest.mark.asyncio
async def test_force_sync_lets_inflight_periodic_cycle_finish(store) -> None:
    gate = asyncio.Event()
    cancelled: list[bool] = []
    remote = FlakyRemote({"count": 0})

    async def gated_fetch():
        try:
            await gate.wait()
        except asyncio.CancelledError:
            cancelled.append(True)
            raise
        return await remote.fetch()

    sync = make_sync(store, remote, fetch=gated_fetch, sync_interval=10)
    sync.update({"count": 1})
    sync.start()
    try:
        await wait_for(lambda: sync.is_syncing)
        forced = asyncio.create_task(sync.force_sync())
        await asyncio.sleep(0.02)
        assert sync.is_syncing
        assert not forced.done()

        gate.set()
        state = await forced
        assert cancelled == []
        assert state.status is SyncStatus.SUCCESS
        assert remote.pushed == [{"count": 1}]
        assert sync.pending_changes() == ()
        assert sync.running
    finally:
        await sync.stop()


def test_rejected_update_reports_rollback(store) -> None:
    rollbacks: list[Exception] = []
    sync = make_sync(store, validate=lambda data: data["count"] >= 0, on_rollback=rollbacks.append)
    with pytest.raises(ValidationFailed) as excinfo:
        sync.update({"count": -1})
    assert rollbacks == [excinfo.value]
    assert sync.data == {"count": 0}
    sync.update({"count": 2})
    assert len(rollbacks) == 1
