"""Sliding-window call quota for upstream APIs."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable

from flow_relay.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allows ``calls_per_window`` calls per rolling ``window`` seconds.

    When the quota is spent, ``acquire`` sleeps until the oldest call leaves
    the window instead of failing. The wait loop is bounded by ``max_waits``.
    """

    def __init__(
        self,
        calls_per_window: int,
        window: float = 60.0,
        max_waits: int = 10,
        name: str = "api",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.calls_per_window = calls_per_window
        self.window = window
        self.max_waits = max_waits
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()

    def acquire(self) -> None:
        for _ in range(self.max_waits + 1):
            now = self._clock()
            while self._calls and self._calls[0] <= now - self.window:
                self._calls.popleft()

            if len(self._calls) < self.calls_per_window:
                self._calls.append(now)
                return

            wait = max(self.window - (now - self._calls[0]), 0.0)
            logger.info(f"{self.name} rate limit reached, waiting {wait:.2f}s")
            self._sleep(wait)

        raise RateLimitExceededError(
            f"{self.name} rate limit still exhausted after {self.max_waits} waits"
        )

    @property
    def in_window(self) -> int:
        return len(self._calls)
