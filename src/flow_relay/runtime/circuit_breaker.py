"""Circuit breaker guarding one upstream dependency."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, TypeVar

from flow_relay.config import CircuitBreakerConfig
from flow_relay.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """CLOSED -> OPEN after ``failure_threshold`` consecutive failures inside
    ``monitoring_window``; OPEN -> HALF_OPEN after ``reset_timeout``;
    HALF_OPEN -> CLOSED on the next success, back to OPEN on the next failure.

    While OPEN, ``call`` returns ``fallback()`` without touching the
    dependency, or raises ``CircuitOpenError`` when no fallback is given.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure: float | None = None
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def unavailable_message(self) -> str:
        return f"Service {self.name} is temporarily unavailable"

    def call(
        self,
        operation: Callable[[], T],
        fallback: Callable[[], T] | None = None,
    ) -> T:
        if self._state is CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.config.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker for {self.name} entering HALF_OPEN state")
            else:
                logger.info(f"Circuit breaker for {self.name} is OPEN, short-circuiting")
                if fallback is not None:
                    return fallback()
                raise CircuitOpenError(self.unavailable_message)

        try:
            result = operation()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def trip(self) -> None:
        """Force the breaker OPEN."""
        self._open(self._clock())

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure = None
        self._opened_at = None

    def _on_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info(f"Circuit breaker for {self.name} reset to CLOSED")
        self._state = CircuitState.CLOSED
        self._failures = 0

    def _on_failure(self) -> None:
        now = self._clock()
        if self._state is CircuitState.HALF_OPEN:
            self._open(now)
            return
        if self._last_failure is not None and now - self._last_failure > self.config.monitoring_window:
            self._failures = 0
        self._failures += 1
        self._last_failure = now
        if self._failures >= self.config.failure_threshold:
            self._open(now)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._last_failure = now
        logger.warning(
            f"Circuit breaker for {self.name} opened after {self._failures} failures"
        )
