from __future__ import annotations

import asyncio

import pytest

from resilient_sync.network import NetworkMonitor
from resilient_sync.retry import RetryExhausted, retry_async


class Operation:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"failure {self.calls}")
        return "ok"


@pytest.mark.asyncio
async def test_retry_succeeds_after_failures() -> None:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    op = Operation(failures=2)
    assert await retry_async(op, 3, 250, sleep=fake_sleep) == "ok"
    assert op.calls == 3
    assert sleeps == [0.25, 0.25]


@pytest.mark.asyncio
async def test_retry_gives_up_without_trailing_delay() -> None:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    op = Operation(failures=10)
    with pytest.raises(RetryExhausted) as excinfo:
        await retry_async(op, 3, 100, sleep=fake_sleep)
    assert op.calls == 3
    assert len(sleeps) == 2
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.last_error, ConnectionError)
    assert excinfo.value.__cause__ is excinfo.value.last_error


@pytest.mark.asyncio
async def test_retry_attempts_floor_is_one() -> None:
    op = Operation(failures=10)
    with pytest.raises(RetryExhausted):
        await retry_async(op, 0, 0)
    assert op.calls == 1


@pytest.mark.asyncio
async def test_retry_waits_for_network_when_offline() -> None:
    network = NetworkMonitor(online=False)
    op = Operation(failures=1)

    async def come_back() -> None:
        await asyncio.sleep(0.01)
        network.set_online(True)

    restore = asyncio.create_task(come_back())
    result = await asyncio.wait_for(retry_async(op, 2, 60_000, network=network), timeout=2)
    await restore
    assert result == "ok"
    assert op.calls == 2
