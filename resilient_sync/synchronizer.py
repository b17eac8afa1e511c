"""Keep one resource's local state reconciled with its remote source."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from .cache import BoundedCache
from .config import ms_to_seconds
from .const import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    DEFAULT_SYNC_INTERVAL,
    METRIC_SYNC_DURATION,
    METRIC_SYNC_FAILURE,
    METRIC_SYNC_PENDING,
    METRIC_SYNC_SUCCESS,
)
from .errors import FetchFailed, PushFailed, SyncError, ValidationFailed
from .log_utils import WarnOnce
from .merge import MergeStrategy, fold_changes, shallow_merge
from .network import NetworkMonitor
from .pending import ChangeKind, PendingChange, PendingLog
from .retry import RetryExhausted, retry_async
from .store import DurableStore

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

MetricsSink = Callable[[str, float, Mapping[str, str]], None]


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class SyncState(Generic[T]):
    data: T
    last_synced_at: datetime | None = None
    status: SyncStatus = SyncStatus.IDLE
    error: SyncError | None = None

    @property
    def is_syncing(self) -> bool:
        return self.status is SyncStatus.SYNCING


class Synchronizer(Generic[T]):
    """Hold one resource's canonical local state and reconcile it remotely.

    Local mutations apply immediately and are appended to a durable pending
    log. :meth:`sync` fetches the remote value, folds the pending log on top,
    validates and pushes the result, then drops the pushed changes. At most
    one sync cycle runs at a time; overlapping calls are dropped.
    """

    def __init__(
        self,
        key: str,
        *,
        initial_data: T,
        store: DurableStore,
        fetch: Callable[[], Awaitable[T]] | None = None,
        push: Callable[[T], Awaitable[None]] | None = None,
        merge: MergeStrategy | None = None,
        validate: Callable[[T], bool] | None = None,
        network: NetworkMonitor | None = None,
        cache: BoundedCache[T] | None = None,
        sync_interval: int = DEFAULT_SYNC_INTERVAL,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: int = DEFAULT_RETRY_DELAY,
        on_sync: Callable[[T], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        on_rollback: Callable[[ValidationFailed], None] | None = None,
        metrics: MetricsSink | None = None,
    ) -> None:
        self.key = key
        self._fetch = fetch
        self._push = push
        self._merge = merge or shallow_merge
        self._validate = validate
        self._network = network
        self._cache = cache
        self.sync_interval = sync_interval
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._on_sync = on_sync
        self._on_error = on_error
        self._on_rollback = on_rollback
        self._metrics = metrics
        self._warn = WarnOnce(_LOGGER)
        self._state: SyncState[T] = SyncState(data=copy.deepcopy(initial_data))
        self.pending = PendingLog(store, key, on_error=self._report_error)
        self._periodic_task: asyncio.Task | None = None
        self._cycle_task: asyncio.Task | None = None
        self._trigger_tasks: set[asyncio.Task] = set()
        self._remove_network_listener: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    @property
    def state(self) -> SyncState[T]:
        return replace(self._state, data=copy.deepcopy(self._state.data))

    @property
    def data(self) -> T:
        return copy.deepcopy(self._state.data)

    @property
    def status(self) -> SyncStatus:
        return self._state.status

    @property
    def is_syncing(self) -> bool:
        return self._state.status is SyncStatus.SYNCING

    @property
    def online(self) -> bool:
        return self._network.online if self._network is not None else True

    def pending_changes(self) -> tuple[PendingChange, ...]:
        return self.pending.entries()

    # ------------------------------------------------------------------
    def update(self, changes: Mapping[str, Any]) -> T:
        """Apply ``changes`` locally and record them for the next push.

        Raises :class:`ValidationFailed` and leaves the data untouched when
        the validator rejects the merged result; ``on_rollback`` is told
        first.
        """

        change = PendingChange(payload=dict(changes), kind=ChangeKind.UPDATE)
        return self._apply_local(change)

    def remove_fields(self, *fields: str) -> T:
        """Drop ``fields`` locally and record the deletion for the next push."""

        change = PendingChange(payload={name: None for name in fields}, kind=ChangeKind.DELETE)
        return self._apply_local(change)

    def _apply_local(self, change: PendingChange) -> T:
        candidate = fold_changes(self._state.data, [change], self._merge)
        if not self._is_valid(candidate):
            err = ValidationFailed(f"local change to {self.key} rejected by validator")
            if self._on_rollback is not None:
                try:
                    self._on_rollback(err)
                except Exception as cb_err:  # pragma: no cover - defensive log
                    _LOGGER.debug("on_rollback callback raised error: %s", cb_err, exc_info=True)
            raise err
        self._state = replace(self._state, data=candidate)
        self.pending.append(change)
        self._emit(METRIC_SYNC_PENDING, len(self.pending))
        return copy.deepcopy(candidate)

    # ------------------------------------------------------------------
    async def sync(self) -> SyncState[T] | None:
        """Run one reconcile cycle.

        Returns ``None`` without doing anything when offline, when a cycle is
        already in flight, or when no fetch capability is configured.
        Otherwise returns the resulting state; failures are reported to
        ``on_error`` and reflected in the state rather than raised.
        """

        if self._fetch is None:
            _LOGGER.debug("Skipping sync for %s: no fetch capability", self.key)
            return None
        if not self.online:
            _LOGGER.debug("Skipping sync for %s: offline", self.key)
            return None
        if self.is_syncing:
            _LOGGER.debug("Skipping sync for %s: already syncing", self.key)
            return None

        self._state = replace(self._state, status=SyncStatus.SYNCING)
        started = time.monotonic()
        snapshot = self.pending.entries()
        try:
            final = await self._run_cycle(snapshot)
        except SyncError as err:
            self._fail(err)
        except Exception as err:  # noqa: BLE001
            _LOGGER.exception("Unexpected error while syncing %s", self.key)
            self._fail(SyncError(f"sync of {self.key} failed: {err}", reason="unexpected"))
        else:
            self._succeed(final)
        finally:
            if self.is_syncing:
                # cancelled mid-cycle; nothing was confirmed
                self._state = replace(self._state, status=SyncStatus.IDLE)
            self._emit(METRIC_SYNC_DURATION, (time.monotonic() - started) * 1000.0)
        return self.state

    async def _run_cycle(self, snapshot: tuple[PendingChange, ...]) -> T:
        assert self._fetch is not None
        fetch = self._fetch
        try:
            remote = await retry_async(
                fetch,
                self.retry_attempts,
                self.retry_delay,
                network=self._network,
                warn=self._warn,
                label=f"{self.key}_fetch",
            )
        except RetryExhausted as err:
            raise FetchFailed(
                f"fetching {self.key} failed after {err.attempts} attempt(s): {err.last_error}",
                attempts=err.attempts,
            ) from err.last_error

        merged = fold_changes(remote, snapshot, self._merge)
        if not self._is_valid(merged):
            raise ValidationFailed(f"merged data for {self.key} rejected by validator")

        if self._push is not None and snapshot:
            push = self._push
            try:
                await retry_async(
                    lambda: push(copy.deepcopy(merged)),
                    self.retry_attempts,
                    self.retry_delay,
                    network=self._network,
                    warn=self._warn,
                    label=f"{self.key}_push",
                )
            except RetryExhausted as err:
                raise PushFailed(
                    f"pushing {self.key} failed after {err.attempts} attempt(s): {err.last_error}",
                    attempts=err.attempts,
                ) from err.last_error
            late = self.pending.entries()[len(snapshot) :]
            self.pending.discard(len(snapshot))
            _LOGGER.debug("Pushed %d pending change(s) for %s", len(snapshot), self.key)
        else:
            late = self.pending.entries()[len(snapshot) :]

        # changes recorded while the cycle was awaiting the network stay local
        return fold_changes(merged, late, self._merge) if late else merged

    def _succeed(self, data: T) -> None:
        self._state = SyncState(
            data=data,
            last_synced_at=datetime.now(tz=UTC),
            status=SyncStatus.SUCCESS,
            error=None,
        )
        _LOGGER.debug("Sync of %s succeeded (%d pending)", self.key, len(self.pending))
        if self._cache is not None:
            self._cache.set(self.key, copy.deepcopy(data))
        self._emit(METRIC_SYNC_SUCCESS, 1)
        self._emit(METRIC_SYNC_PENDING, len(self.pending))
        if self._on_sync is not None:
            try:
                self._on_sync(copy.deepcopy(data))
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("on_sync callback raised error: %s", err, exc_info=True)

    def _fail(self, err: SyncError) -> None:
        self._state = replace(self._state, status=SyncStatus.ERROR, error=err)
        self._warn(f"{self.key}_{err.reason}", "Sync of %s failed: %s", self.key, err)
        self._emit(METRIC_SYNC_FAILURE, 1, reason=err.reason)
        self._report_error(err)

    # ------------------------------------------------------------------
    async def force_sync(self) -> SyncState[T] | None:
        """Cancel the scheduled periodic sync and run one immediately.

        A periodic cycle already in flight is left to finish and awaited
        before the forced cycle starts.
        """

        restart = self._periodic_task is not None
        await self._cancel_periodic()
        try:
            cycle = self._cycle_task
            if cycle is not None and not cycle.done():
                await asyncio.shield(cycle)
            return await self.sync()
        finally:
            if restart:
                self._start_periodic()

    def start(self) -> None:
        """Start the periodic timer and listen for network transitions."""

        if self._network is not None and self._remove_network_listener is None:
            self._remove_network_listener = self._network.add_listener(self._on_network_change)
        self._start_periodic()

    async def stop(self) -> None:
        if self._remove_network_listener is not None:
            self._remove_network_listener()
            self._remove_network_listener = None
        await self._cancel_periodic()
        tasks = list(self._trigger_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._trigger_tasks.clear()

    @property
    def running(self) -> bool:
        return self._periodic_task is not None and not self._periodic_task.done()

    def _start_periodic(self) -> None:
        if self.sync_interval <= 0 or self.running:
            return
        self._periodic_task = asyncio.get_running_loop().create_task(self._periodic_loop())

    async def _cancel_periodic(self) -> None:
        task = self._periodic_task
        self._periodic_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _periodic_loop(self) -> None:
        interval = ms_to_seconds(self.sync_interval)
        while True:
            await asyncio.sleep(interval)
            # cancelling the loop stops the timer, never the cycle it started
            cycle = asyncio.get_running_loop().create_task(self.sync())
            self._cycle_task = cycle
            self._trigger_tasks.add(cycle)
            cycle.add_done_callback(self._trigger_tasks.discard)
            try:
                await asyncio.shield(cycle)
            except asyncio.CancelledError:
                raise
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.exception("Unexpected periodic sync error for %s: %s", self.key, err)

    def _on_network_change(self, online: bool) -> None:
        if not online or not self.pending:
            return
        _LOGGER.info("Back online with %d pending change(s) for %s; syncing", len(self.pending), self.key)
        task = asyncio.get_running_loop().create_task(self.sync())
        self._trigger_tasks.add(task)
        task.add_done_callback(self._trigger_tasks.discard)

    # ------------------------------------------------------------------
    def _is_valid(self, data: Any) -> bool:
        if self._validate is None:
            return True
        try:
            return bool(self._validate(data))
        except Exception as err:  # noqa: BLE001 - validator errors count as rejection
            _LOGGER.debug("Validator for %s raised %s", self.key, err)
            return False

    def _report_error(self, err: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(err)
        except Exception as cb_err:  # pragma: no cover - defensive log
            _LOGGER.debug("on_error callback raised error: %s", cb_err, exc_info=True)

    def _emit(self, name: str, value: float, **tags: str) -> None:
        if self._metrics is None:
            return
        try:
            self._metrics(name, float(value), {"resource": self.key, **tags})
        except Exception as err:  # pragma: no cover - defensive log
            _LOGGER.debug("Metrics sink raised error: %s", err, exc_info=True)

    def status_dict(self) -> dict[str, Any]:
        state = self._state
        return {
            "key": self.key,
            "status": state.status.value,
            "last_synced_at": state.last_synced_at.isoformat() if state.last_synced_at else None,
            "last_error": str(state.error) if state.error else None,
            "pending": len(self.pending),
            "periodic": self.running,
        }


__all__ = ["MetricsSink", "SyncState", "SyncStatus", "Synchronizer"]
