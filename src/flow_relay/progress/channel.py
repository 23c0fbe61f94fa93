"""Per-request publish/subscribe registry for job progress."""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from flow_relay.config import ProgressConfig
from flow_relay.progress.models import ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class _Subscription:
    callbacks: dict[int, ProgressCallback | None] = field(default_factory=dict)
    latest: ProgressEvent | None = None
    expires_at: float | None = None
    last_activity: float = 0.0
    received: int = 0


class ProgressChannel:
    """Routes ingested progress events to subscribers keyed by request ID.

    Only subscribed request IDs hold state. After the first terminal event for
    a request its state stays readable for ``grace_period`` seconds and is
    then purged. A request that sees no subscribe or ingest for
    ``idle_timeout`` seconds is purged too, so subscriptions whose terminal
    event never arrives cannot accumulate.

    Events are advisory: duplicates and out-of-order arrivals are accepted,
    and ``get_progress`` always reflects the last event ingested.

    Args:
        config: Retention settings.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        config: ProgressConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ProgressConfig()
        self._clock = clock
        self._subscriptions: dict[str, _Subscription] = {}
        self._tokens = itertools.count(1)

    def subscribe(
        self,
        request_id: str,
        callback: ProgressCallback | None = None,
    ) -> Callable[[], None]:
        """Register interest in ``request_id``.

        Returns a closure that stops delivery to this subscriber and, once no
        subscriber remains, releases the request's state. Calling it more than
        once is harmless.
        """
        self.purge_expired()
        sub = self._subscriptions.setdefault(request_id, _Subscription())
        sub.last_activity = self._clock()
        token = next(self._tokens)
        sub.callbacks[token] = callback
        logger.debug(f"Subscribed to progress for {request_id}")

        def unsubscribe() -> None:
            current = self._subscriptions.get(request_id)
            if current is not sub or token not in sub.callbacks:
                return
            del sub.callbacks[token]
            if not sub.callbacks:
                del self._subscriptions[request_id]
                logger.debug(f"Released progress state for {request_id}")

        return unsubscribe

    def ingest(self, event: ProgressEvent) -> bool:
        """Deliver ``event`` to its subscribers.

        Returns False when nobody is subscribed and the event was dropped.
        """
        self.purge_expired()
        sub = self._subscriptions.get(event.request_id)
        if sub is None:
            logger.debug(
                f"Dropping {event.status.value} event for unknown request {event.request_id}"
            )
            return False

        now = self._clock()
        sub.latest = event
        sub.received += 1
        sub.last_activity = now
        if event.is_terminal and sub.expires_at is None:
            sub.expires_at = now + self.config.grace_period

        for callback in list(sub.callbacks.values()):
            if callback is None:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.warning(
                    f"Progress subscriber for {event.request_id} raised: {e}"
                )
        return True

    def get_progress(self, request_id: str) -> ProgressEvent | None:
        self.purge_expired()
        sub = self._subscriptions.get(request_id)
        return sub.latest if sub else None

    def is_subscribed(self, request_id: str) -> bool:
        self.purge_expired()
        return request_id in self._subscriptions

    def purge_expired(self) -> int:
        """Drop finished or idle state. Returns the number purged."""
        now = self._clock()
        idle_before = now - self.config.idle_timeout
        expired = [
            request_id
            for request_id, sub in self._subscriptions.items()
            if (sub.expires_at is not None and sub.expires_at <= now)
            or sub.last_activity <= idle_before
        ]
        for request_id in expired:
            del self._subscriptions[request_id]
        if expired:
            logger.debug(f"Purged progress state for {len(expired)} finished or idle request(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._subscriptions)
