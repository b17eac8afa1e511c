"""Explicit engine instance owning the shared resources of the sync core."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from typing import Any, TypeVar

from aiohttp import ClientSession

from .cache import BoundedCache
from .channel import ReconnectingChannel
from .config import SyncEngineConfig
from .const import CACHE_KEY_PREFIX, NAMED_CACHE_KEY_PREFIX
from .group import SyncGroup
from .merge import MergeStrategy
from .network import NetworkMonitor
from .store import DurableStore
from .synchronizer import MetricsSink, Synchronizer
from .transport import AiohttpWebSocketTransport, ChannelTransport

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SyncEngine:
    """Construct and track caches, synchronizers and channels.

    One engine is created by the host application and handed to whatever
    needs it. It owns the durable store, the network monitor and, unless
    one is supplied, the aiohttp session used by WebSocket channels.
    """

    def __init__(
        self,
        config: SyncEngineConfig | None,
        store: DurableStore,
        *,
        network: NetworkMonitor | None = None,
        session: ClientSession | None = None,
        metrics: MetricsSink | None = None,
    ) -> None:
        self.config = config or SyncEngineConfig()
        self.store = store
        self.network = network or NetworkMonitor()
        self.metrics = metrics
        self._session = session
        self._owns_session = session is None
        self._caches: dict[str, BoundedCache[Any]] = {}
        self._synchronizers: dict[str, Synchronizer[Any]] = {}
        self._channels: dict[str, ReconnectingChannel] = {}
        self._groups: dict[str, SyncGroup] = {}
        self._probe_task: asyncio.Task | None = None
        self._started = False

    # ------------------------------------------------------------------
    def create_cache(
        self,
        name: str = "",
        *,
        durable: bool = True,
        validate: Callable[[Any], bool] | None = None,
        fetcher: Callable[[str], Awaitable[Any]] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        ttl: int | None = None,
        max_size: int | None = None,
    ) -> BoundedCache[Any]:
        if name in self._caches:
            raise ValueError(f"cache {name!r} already exists")
        cache: BoundedCache[Any] = BoundedCache(
            ttl=ttl if ttl is not None else self.config.ttl,
            max_size=max_size if max_size is not None else self.config.max_size,
            store=self.store if durable else None,
            validate=validate,
            fetcher=fetcher,
            on_error=on_error,
            key_prefix=f"{NAMED_CACHE_KEY_PREFIX}{name}:" if name else CACHE_KEY_PREFIX,
        )
        if durable:
            cache.load()
        self._caches[name] = cache
        return cache

    def create_synchronizer(
        self,
        key: str,
        *,
        initial_data: T,
        fetch: Callable[[], Awaitable[T]] | None = None,
        push: Callable[[T], Awaitable[None]] | None = None,
        merge: MergeStrategy | None = None,
        validate: Callable[[T], bool] | None = None,
        cache: BoundedCache[T] | None = None,
        on_sync: Callable[[T], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        on_rollback: Callable[[Exception], None] | None = None,
    ) -> Synchronizer[T]:
        """Register a synchronizer; resource keys must be unique per engine."""

        if key in self._synchronizers:
            raise ValueError(f"synchronizer {key!r} already registered")
        synchronizer: Synchronizer[T] = Synchronizer(
            key,
            initial_data=initial_data,
            store=self.store,
            fetch=fetch,
            push=push,
            merge=merge,
            validate=validate,
            network=self.network,
            cache=cache,
            sync_interval=self.config.sync_interval,
            retry_attempts=self.config.retry_attempts,
            retry_delay=self.config.retry_delay,
            on_sync=on_sync,
            on_error=on_error,
            on_rollback=on_rollback,
            metrics=self.metrics,
        )
        self._synchronizers[key] = synchronizer
        if self._started:
            synchronizer.start()
        return synchronizer

    def create_channel(
        self,
        url: str,
        *,
        transport: ChannelTransport | None = None,
        name: str | None = None,
    ) -> ReconnectingChannel:
        name = name or url
        if name in self._channels:
            raise ValueError(f"channel {name!r} already exists")
        if transport is None:
            transport = AiohttpWebSocketTransport(self._ensure_session())
        channel = ReconnectingChannel(
            url,
            transport,
            reconnect_attempts=self.config.reconnect_attempts,
            reconnect_interval=self.config.reconnect_interval,
            heartbeat_interval=self.config.heartbeat_interval,
            heartbeat_message=self.config.heartbeat_message,
            network=self.network,
        )
        self._channels[name] = channel
        return channel

    def create_group(self, name: str, keys: Iterable[str]) -> SyncGroup:
        members = [self.synchronizer(key) for key in keys]
        group = SyncGroup(name, members)
        self._groups[name] = group
        return group

    def synchronizer(self, key: str) -> Synchronizer[Any]:
        try:
            return self._synchronizers[key]
        except KeyError:
            raise KeyError(f"no synchronizer registered for {key!r}") from None

    def cache(self, name: str) -> BoundedCache[Any]:
        return self._caches[name]

    def channel(self, name: str) -> ReconnectingChannel:
        return self._channels[name]

    def group(self, name: str) -> SyncGroup:
        return self._groups[name]

    # ------------------------------------------------------------------
    def _ensure_session(self) -> ClientSession:
        if self._session is None:
            self._session = ClientSession()
            self._owns_session = True
        return self._session

    async def async_start(self, *, probe_url: str | None = None, probe_interval: float = 30.0) -> None:
        """Start periodic syncs and, optionally, a network reachability probe."""

        if self._started:
            return
        self._started = True
        for synchronizer in self._synchronizers.values():
            synchronizer.start()
        if probe_url:
            session = self._ensure_session()
            self._probe_task = asyncio.get_running_loop().create_task(
                self.network.run_probe_loop(session, probe_url, interval_seconds=probe_interval)
            )
        _LOGGER.info(
            "Sync engine started with %d synchronizer(s) and %d channel(s)",
            len(self._synchronizers),
            len(self._channels),
        )

    async def async_stop(self) -> None:
        """Close channels, stop synchronizers and release an owned session."""

        self._started = False
        if self._probe_task is not None:
            self._probe_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._probe_task
            self._probe_task = None
        for channel in self._channels.values():
            channel.close()
        for synchronizer in self._synchronizers.values():
            await synchronizer.stop()
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
        self.store.close()
        _LOGGER.info("Sync engine stopped")

    async def __aenter__(self) -> SyncEngine:
        await self.async_start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.async_stop()

    def status(self) -> dict[str, Any]:
        """Return diagnostic information about every registered component."""

        return {
            "online": self.network.online,
            "network_since": self.network.since.isoformat() if self.network.since else None,
            "synchronizers": {key: sync.status_dict() for key, sync in self._synchronizers.items()},
            "caches": {name: {"size": len(cache), "max_size": cache.max_size} for name, cache in self._caches.items()},
            "channels": {
                name: {
                    "url": channel.url,
                    "state": channel.state.value,
                    "reconnect_attempt": channel.reconnect_attempt,
                    "queued": len(channel.queued),
                }
                for name, channel in self._channels.items()
            },
            "groups": {
                name: {"is_syncing": group.is_syncing, "has_error": group.has_error}
                for name, group in self._groups.items()
            },
        }


__all__ = ["SyncEngine"]
