from __future__ import annotations

import logging
import time
from collections.abc import Callable


class WarnOnce:
    """Log a warning once per time window for a given code.

    Each component owns its own instance. The code table is capped and the
    oldest entries are discarded to avoid unbounded growth.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        window: float = 60.0,
        max_codes: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = logger
        self._window = window
        self._max_codes = max_codes
        self._clock = clock
        self._last: dict[str, float] = {}

    def __call__(self, code: str, message: str, *args) -> bool:
        """Return True when the warning was emitted."""
        now = self._clock()
        last = self._last.get(code)
        if last is not None and now - last <= self._window:
            self._logger.debug("%s: " + message, code, *args)
            return False
        if len(self._last) >= self._max_codes:
            oldest = min(self._last, key=self._last.get)
            self._last.pop(oldest, None)
        self._last[code] = now
        self._logger.warning("%s: " + message, code, *args)
        return True

    def reset(self, code: str | None = None) -> None:
        if code is None:
            self._last.clear()
        else:
            self._last.pop(code, None)
