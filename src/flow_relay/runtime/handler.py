"""Entry point of the job runtime: authenticate and dispatch one request."""

from __future__ import annotations

import hmac
import json
import logging
import time
from typing import Any, Callable

from flow_relay.config import RuntimeConfig
from flow_relay.flows.payload import HEALTH_CHECK_ACTION, PROCESS_ACTION
from flow_relay.progress.webhook import WebhookSender
from flow_relay.runtime.base import Mailbox, Storage
from flow_relay.runtime.circuit_breaker import CircuitBreaker
from flow_relay.runtime.job import FlowJob
from flow_relay.runtime.responses import error_response, health_response

logger = logging.getLogger(__name__)


class JobHandler:
    """Handles two-layer ``{secret, payload}`` requests forwarded by the relay.

    Circuit breakers live on the handler so their state carries across
    requests served by the same process. ``handle`` never raises.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        mailbox: Mailbox,
        storage: Storage,
        webhook: WebhookSender | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.mailbox = mailbox
        self.storage = storage
        self.webhook = webhook if webhook is not None else WebhookSender(config.webhook, sleep=sleep)
        self.mail_breaker = CircuitBreaker("mail", config.circuit_breaker, clock)
        self.storage_breaker = CircuitBreaker("storage", config.circuit_breaker, clock)
        self._sleep = sleep
        self._clock = clock

    def handle(self, body: str | bytes | dict[str, Any]) -> dict[str, Any]:
        try:
            return self._handle(body)
        except Exception as e:
            logger.exception(f"Unhandled runtime error: {e}")
            return error_response(f"Internal error: {e}", version=self.config.version)

    def _handle(self, body: str | bytes | dict[str, Any]) -> dict[str, Any]:
        if isinstance(body, (str, bytes)):
            try:
                body = json.loads(body)
            except ValueError:
                return error_response("Invalid JSON in request body", version=self.config.version)
        if not isinstance(body, dict):
            return error_response("Request body must be a JSON object", version=self.config.version)

        if not self.config.secret:
            logger.error("Runtime secret is not configured")
            return error_response("Runtime secret not configured", version=self.config.version)

        secret = body.get("secret")
        if not isinstance(secret, str) or not hmac.compare_digest(
            secret.encode("utf-8"), self.config.secret.encode("utf-8")
        ):
            logger.warning("Rejected request with invalid secret")
            return error_response("Invalid authentication", version=self.config.version)

        payload = body.get("payload")
        if not isinstance(payload, dict):
            return error_response("Missing payload layer", version=self.config.version)

        action = payload.get("action")
        if action == HEALTH_CHECK_ACTION:
            return health_response(self.config.version)
        if action == PROCESS_ACTION:
            return self._process(payload)

        logger.warning(f"Unknown action requested: {action!r}")
        return error_response(f"Unknown action: {action}", version=self.config.version)

    def _process(self, payload: dict[str, Any]) -> dict[str, Any]:
        user_config = payload.get("userConfig")
        if not isinstance(user_config, dict):
            return error_response("Missing userConfig", version=self.config.version)

        missing = [key for key in ("driveFolder", "flowName") if not user_config.get(key)]
        if missing:
            return error_response(
                f"Missing required fields: {', '.join(missing)}", version=self.config.version
            )

        debug_info = payload.get("debug_info") or {}
        request_id = debug_info.get("request_id") or payload.get("request_id") or ""
        logger.info(f"Processing flow '{user_config['flowName']}' ({request_id})")

        job = FlowJob(
            self.mailbox,
            self.storage,
            config=self.config,
            webhook=self.webhook,
            mail_breaker=self.mail_breaker,
            storage_breaker=self.storage_breaker,
            sleep=self._sleep,
            clock=self._clock,
        )
        return job.run(
            user_config,
            user_email=payload.get("userEmail"),
            request_id=request_id,
            webhook_url=payload.get("webhookUrl"),
        )
