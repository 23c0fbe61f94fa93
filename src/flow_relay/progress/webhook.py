"""Webhook delivery (job runtime side) and ingestion (relay side)."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from flow_relay.config import WebhookConfig
from flow_relay.progress.channel import ProgressChannel
from flow_relay.progress.models import WEBHOOK_EVENT_TYPE, ProgressEvent

logger = logging.getLogger(__name__)


class WebhookSender:
    """Best-effort, fire-and-forget delivery of progress events.

    A failed delivery loses only the notification; the job continues.

    Args:
        config: Timeout, attempt count and fixed delay between attempts.
        client: Optional ``httpx.Client`` (tests pass one with a mock transport).
        sleep: Blocking sleep used between attempts.
    """

    def __init__(
        self,
        config: WebhookConfig | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or WebhookConfig()
        self._client = client
        self._sleep = sleep

    def send(self, url: str | None, event: ProgressEvent) -> bool:
        """POST ``event`` to ``url``. Returns True once any attempt is accepted."""
        if not url:
            return False

        body = event.to_webhook()
        headers = {"Content-Type": "application/json", "X-Request-ID": event.request_id}

        for attempt in range(1, self.config.attempts + 1):
            try:
                response = self._post(url, body, headers)
                if response.is_success:
                    return True
                logger.warning(
                    f"Webhook for {event.request_id} rejected with HTTP "
                    f"{response.status_code} (attempt {attempt})"
                )
            except httpx.HTTPError as e:
                logger.warning(
                    f"Webhook delivery for {event.request_id} failed (attempt {attempt}): {e}"
                )
            if attempt < self.config.attempts:
                self._sleep(self.config.retry_delay)

        logger.error(
            f"Giving up on {event.status.value} webhook for {event.request_id} "
            f"after {self.config.attempts} attempts"
        )
        return False

    def _post(self, url: str, body: dict, headers: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, json=body, headers=headers, timeout=self.config.timeout)
        with httpx.Client(timeout=self.config.timeout) as client:
            return client.post(url, json=body, headers=headers)


class WebhookReceiver:
    """Validates inbound webhook requests and ingests them into a channel."""

    def __init__(self, channel: ProgressChannel):
        self.channel = channel

    def handle(
        self,
        body: Any,
        headers: dict[str, str] | None = None,
        method: str = "POST",
    ) -> tuple[int, dict[str, Any]]:
        """Process one webhook request. Returns ``(http_status, response_body)``."""
        if method.upper() != "POST":
            return 405, {"error": "Method not allowed", "expected": "POST"}

        if not isinstance(body, dict) or not all(
            body.get(key) for key in ("type", "status", "requestId")
        ):
            logger.warning("Rejected webhook with invalid structure")
            return 400, {
                "error": "Invalid webhook structure",
                "required": ["type", "status", "requestId"],
            }

        header_id = _header(headers, "X-Request-ID")
        if header_id and header_id != body["requestId"]:
            logger.warning(
                f"Webhook X-Request-ID {header_id} does not match body requestId "
                f"{body['requestId']}"
            )

        if body["type"] != WEBHOOK_EVENT_TYPE:
            logger.warning(f"Unknown webhook type: {body['type']}")
            return 200, {
                "received": True,
                "processed": False,
                "reason": "Unknown webhook type",
            }

        try:
            event = ProgressEvent.from_webhook(body)
        except ValueError as e:
            return 400, {"error": "Invalid webhook structure", "details": str(e)}

        delivered = self.channel.ingest(event)
        return 200, {
            "received": True,
            "processed": delivered,
            "requestId": event.request_id,
            "status": event.status.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def _header(headers: dict[str, str] | None, name: str) -> str | None:
    if not headers:
        return None
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None
