"""Host network-status signal shared by synchronizers and channels."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from aiohttp import ClientError, ClientSession, ClientTimeout

_LOGGER = logging.getLogger(__name__)

NetworkListener = Callable[[bool], None]


class NetworkMonitor:
    """Track whether the host considers itself online.

    The host feeds status through :meth:`set_online`, or lets
    :meth:`run_probe_loop` derive it from reachability checks. Listeners
    are invoked on every transition, never for a repeated value.
    """

    def __init__(self, *, online: bool = True) -> None:
        self._online = online
        self._since: datetime | None = None
        self._listeners: list[NetworkListener] = []
        self._changed: asyncio.Event | None = None
        self.last_latency_ms: float | None = None

    @property
    def online(self) -> bool:
        return self._online

    @property
    def since(self) -> datetime | None:
        return self._since

    def add_listener(self, listener: NetworkListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""

        if listener not in self._listeners:
            self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        self._since = datetime.now(tz=UTC)
        _LOGGER.info("Network status changed: %s", "online" if online else "offline")
        if self._changed is not None:
            self._changed.set()
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("Network listener raised error: %s", err, exc_info=True)

    async def wait_online(self, timeout: float | None = None) -> bool:
        """Wait until the host reports online. Returns the final status."""

        if self._online:
            return True
        if self._changed is None:
            self._changed = asyncio.Event()
        deadline = None if timeout is None else asyncio.get_running_loop().time() + timeout
        while not self._online:
            self._changed.clear()
            remaining = None if deadline is None else deadline - asyncio.get_running_loop().time()
            if remaining is not None and remaining <= 0:
                break
            try:
                await asyncio.wait_for(self._changed.wait(), remaining)
            except TimeoutError:
                break
        return self._online

    # ------------------------------------------------------------------
    async def probe(self, session: ClientSession, url: str, *, timeout: float = 5.0) -> bool:
        """Check reachability of ``url`` and update the status accordingly."""

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            async with session.head(url, timeout=ClientTimeout(total=timeout), allow_redirects=True) as resp:
                reachable = resp.status < 500
        except (TimeoutError, ClientError) as err:
            _LOGGER.debug("Network probe to %s failed: %s", url, err)
            reachable = False
        if reachable:
            self.last_latency_ms = (loop.time() - started) * 1000.0
        self.set_online(reachable)
        return reachable

    async def run_probe_loop(self, session: ClientSession, url: str, *, interval_seconds: float = 30.0) -> None:
        while True:
            try:
                await self.probe(session, url)
            except asyncio.CancelledError:
                raise
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.exception("Unexpected network probe error: %s", err)
            await asyncio.sleep(interval_seconds)


__all__ = ["NetworkListener", "NetworkMonitor"]
