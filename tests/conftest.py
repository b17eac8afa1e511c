import asyncio
from collections.abc import Callable
from copy import deepcopy
from typing import Any

import pytest

from resilient_sync.store import MemoryStore


class ManualClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeHandle:
    def __init__(self, listener) -> None:
        self.listener = listener
        self.sent: list[str] = []
        self.closed = False
        self.fail_send = False
        self.fail_next = 0

    def send(self, text: str) -> None:
        if self.fail_next:
            self.fail_next -= 1
            raise ConnectionError("write interrupted")
        if self.fail_send:
            raise ConnectionError("socket gone")
        self.sent.append(text)

    def close(self) -> None:
        self.closed = True

    def drop(self, code: int = 1006, reason: str = "dropped") -> None:
        self.listener.on_close(code, reason)

    def deliver(self, text: str) -> None:
        self.listener.on_message(text)


class FakeTransport:
    """Transport that opens (or refuses) connections on the next loop tick."""

    def __init__(self, *, accept: bool = True) -> None:
        self.accept = accept
        self.handles: list[FakeHandle] = []
        self.urls: list[str] = []

    @property
    def opens(self) -> int:
        return len(self.handles)

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]

    def open(self, url: str, listener) -> FakeHandle:
        handle = FakeHandle(listener)
        self.handles.append(handle)
        self.urls.append(url)
        loop = asyncio.get_running_loop()
        if self.accept:
            loop.call_soon(listener.on_open)
        else:
            loop.call_soon(listener.on_close, 1006, "refused")
        return handle


class FlakyRemote:
    """Remote fetch/push pair whose failures are scripted per call."""

    def __init__(self, data: Any, *, fetch_failures: int = 0, push_failures: int = 0) -> None:
        self.data = deepcopy(data)
        self.fetch_failures = fetch_failures
        self.push_failures = push_failures
        self.fetch_calls = 0
        self.push_calls = 0
        self.pushed: list[Any] = []

    async def fetch(self) -> Any:
        self.fetch_calls += 1
        if self.fetch_failures:
            self.fetch_failures -= 1
            raise ConnectionError("fetch failed")
        return deepcopy(self.data)

    async def push(self, data: Any) -> None:
        self.push_calls += 1
        if self.push_failures:
            self.push_failures -= 1
            raise ConnectionError("push failed")
        self.pushed.append(deepcopy(data))
        self.data = deepcopy(data)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
