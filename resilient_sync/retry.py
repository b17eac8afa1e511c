from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .config import ms_to_seconds
from .log_utils import WarnOnce
from .network import NetworkMonitor

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised by :func:`retry_async` once every attempt has failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    delay_ms: int,
    *,
    network: NetworkMonitor | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    warn: WarnOnce | None = None,
    label: str = "request",
) -> T:
    """Run ``operation`` up to ``attempts`` times with a fixed delay between tries.

    No delay follows the final attempt. While ``network`` reports offline the
    wait between tries ends early as soon as the host comes back online.
    """

    attempts = max(int(attempts), 1)
    delay = ms_to_seconds(delay_ms)
    last_error: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as err:  # noqa: BLE001 - every failure consumes an attempt
            last_error = err
            if warn is not None:
                warn(f"{label}_failed", "%s attempt %d/%d failed: %s", label, attempt, attempts, err)
            else:
                _LOGGER.debug("%s attempt %d/%d failed: %s", label, attempt, attempts, err)
            if attempt == attempts:
                break
            if network is not None and not network.online:
                await network.wait_online(timeout=delay)
            else:
                await sleep(delay)

    assert last_error is not None
    raise RetryExhausted(attempts, last_error) from last_error


__all__ = ["RetryExhausted", "retry_async"]
