"""Retry with exponential backoff for upstream API calls."""

from __future__ import annotations

import logging
import socket
import time
from typing import Callable, TypeVar

import httpx

from flow_relay.config import RetryConfig
from flow_relay.exceptions import FlowRelayError, RetryableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}


def is_retryable(error: BaseException) -> bool:
    """Transient failures: quota, 5xx, timeouts, dropped connections."""
    if isinstance(error, RetryableError):
        return True
    if isinstance(error, FlowRelayError):
        return False
    if isinstance(error, (ConnectionError, TimeoutError, socket.timeout, httpx.TransportError)):
        return True
    # googleapiclient.errors.HttpError carries the response on ``resp``
    resp = getattr(error, "resp", None)
    status = getattr(resp, "status", None) or getattr(error, "status_code", None)
    try:
        return int(status) in RETRYABLE_STATUSES
    except (TypeError, ValueError):
        return False


class RetryHandler:
    """Runs an operation up to ``max_retries`` times.

    Permanent failures propagate immediately. A retryable failure on the last
    attempt is raised as ``RetryableError`` chained to the original.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or RetryConfig(jitter=0.0)
        self._sleep = sleep

    def execute(
        self,
        operation: Callable[[], T],
        context: str = "operation",
        max_retries: int | None = None,
    ) -> T:
        attempts = max_retries or self.config.max_retries
        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except Exception as e:
                if not is_retryable(e):
                    raise
                logger.warning(f"{context} failed on attempt {attempt}/{attempts}: {e}")
                if attempt == attempts:
                    raise RetryableError(
                        f"{context} failed after {attempts} attempts: {e}"
                    ) from e
                delay = self.config.delay_for(attempt)
                logger.info(f"Retrying {context} in {delay:.2f}s")
                self._sleep(delay)
        raise RetryableError(f"{context} was not attempted")
