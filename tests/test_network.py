from __future__ import annotations

import asyncio

import pytest
from aiohttp import ClientError

from resilient_sync.network import NetworkMonitor


class DummyResp:
    def __init__(self, status: int) -> None:
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class Session:
    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    def head(self, url, timeout=None, allow_redirects=True):
        self.calls.append(url)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return DummyResp(outcome)


def test_listeners_fire_on_transitions_only() -> None:
    network = NetworkMonitor()
    seen: list[bool] = []
    remove = network.add_listener(seen.append)
    network.set_online(True)
    network.set_online(False)
    network.set_online(False)
    network.set_online(True)
    remove()
    network.set_online(False)
    assert seen == [False, True]
    assert network.since is not None


def test_listener_errors_are_contained() -> None:
    network = NetworkMonitor()

    def broken(_online: bool) -> None:
        raise RuntimeError("boom")

    seen: list[bool] = []
    network.add_listener(broken)
    network.add_listener(seen.append)
    network.set_online(False)
    assert seen == [False]


@pytest.mark.asyncio
async def test_wait_online_times_out() -> None:
    network = NetworkMonitor(online=False)
    assert await network.wait_online(timeout=0.01) is False


@pytest.mark.asyncio
async def test_wait_online_wakes_on_signal() -> None:
    network = NetworkMonitor(online=False)
    asyncio.get_running_loop().call_later(0.01, network.set_online, True)
    assert await network.wait_online(timeout=2) is True


@pytest.mark.asyncio
async def test_probe_updates_status() -> None:
    network = NetworkMonitor()
    session = Session([ClientError("unreachable"), 503, 204])
    assert await network.probe(session, "https://example.invalid/health") is False
    assert network.online is False
    assert await network.probe(session, "https://example.invalid/health") is False
    assert await network.probe(session, "https://example.invalid/health") is True
    assert network.online is True
    assert network.last_latency_ms is not None
    assert len(session.calls) == 3
