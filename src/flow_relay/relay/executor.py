"""End-to-end flow execution: build, subscribe, submit, normalize, notify."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from flow_relay.auth.tokens import TokenManager
from flow_relay.exceptions import (
    AuthenticationError,
    ErrorKind,
    FlowRelayError,
    NetworkError,
    PermissionDeniedError,
    RelayTimeoutError,
    ValidationError,
)
from flow_relay.flows.models import FlowConfig
from flow_relay.flows.payload import PayloadBuilder
from flow_relay.history import ExecutionHistory, ExecutionRecord
from flow_relay.progress.channel import ProgressCallback, ProgressChannel
from flow_relay.relay.client import RelayClient
from flow_relay.relay.response import ResponseProcessor
from flow_relay.relay.result import FlowExecutionResult

logger = logging.getLogger(__name__)

Notifier = Callable[[FlowExecutionResult], None]


class FlowExecutor:
    """Runs one flow through the relay and always returns a result.

    An ``AuthenticationError`` triggers at most one token refresh followed by
    one resubmission. Every call ends in exactly one ``notifier`` call.

    Args:
        client: Relay client whose token provider reads from ``tokens``.
        builder: Payload builder.
        tokens: Token manager used for the refresh-and-retry.
        channel: Progress channel; the run subscribes to its request ID
            for its duration.
        notifier: Receives the terminal result.
        history: Optional execution log.
    """

    def __init__(
        self,
        client: RelayClient,
        builder: PayloadBuilder | None = None,
        tokens: TokenManager | None = None,
        channel: ProgressChannel | None = None,
        processor: ResponseProcessor | None = None,
        notifier: Notifier | None = None,
        history: ExecutionHistory | None = None,
    ):
        self.client = client
        self.builder = builder or PayloadBuilder(webhook_url=client.config.webhook_url)
        self.tokens = tokens
        self.channel = channel
        self.processor = processor or ResponseProcessor()
        self.notifier = notifier
        self.history = history

    async def execute(
        self,
        flow: FlowConfig,
        user_email: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> FlowExecutionResult:
        started_at = datetime.now(timezone.utc).isoformat()
        start = time.monotonic()

        try:
            payload = self.builder.build(flow, user_email)
        except ValidationError as e:
            logger.warning(f"Flow '{flow.flow_name}' failed validation: {e}")
            result = FlowExecutionResult.failure(str(e), ErrorKind.VALIDATION)
            return self._finish(flow, result, started_at, start)

        request_id = payload["debug_info"]["request_id"]
        unsubscribe = None
        if self.channel is not None:
            unsubscribe = self.channel.subscribe(request_id, on_progress)

        try:
            result = await self._submit(payload, flow.user_id)
        finally:
            if unsubscribe is not None:
                unsubscribe()

        if result.request_id is None:
            result.request_id = request_id
        return self._finish(flow, result, started_at, start)

    async def _submit(self, payload: dict, user_id: str) -> FlowExecutionResult:
        refreshed = False
        while True:
            stale_token = None
            if self.tokens is not None:
                current = self.tokens.current(user_id)
                stale_token = current.access_token if current else None
            try:
                raw = await self.client.submit(payload)
            except AuthenticationError as e:
                if refreshed or self.tokens is None:
                    return FlowExecutionResult.failure(
                        str(e), ErrorKind.AUTHENTICATION, status_code=e.status
                    )
                logger.info(f"Authentication rejected, refreshing token for {user_id} once")
                try:
                    await self.tokens.refresh(user_id, stale_token=stale_token)
                except AuthenticationError as refresh_error:
                    return FlowExecutionResult.failure(
                        str(refresh_error), ErrorKind.AUTHENTICATION, status_code=e.status
                    )
                refreshed = True
                continue
            except PermissionDeniedError as e:
                return FlowExecutionResult.failure(str(e), ErrorKind.PERMISSION, status_code=e.status)
            except RelayTimeoutError as e:
                return FlowExecutionResult.failure(str(e), ErrorKind.TIMEOUT)
            except NetworkError as e:
                return FlowExecutionResult.failure(
                    f"Connectivity failure: {e}", ErrorKind.NETWORK
                )
            except FlowRelayError as e:
                return FlowExecutionResult.failure(str(e), e.kind, status_code=e.status)
            return self.processor.process(raw)

    def _finish(
        self,
        flow: FlowConfig,
        result: FlowExecutionResult,
        started_at: str,
        start: float,
    ) -> FlowExecutionResult:
        duration_ms = int((time.monotonic() - start) * 1000)
        if result.success:
            logger.info(f"Flow '{flow.flow_name}' completed in {duration_ms}ms: {result.summary()}")
        else:
            logger.error(
                f"Flow '{flow.flow_name}' failed ({result.error_kind.value}) "
                f"in {duration_ms}ms: {result.error}"
            )

        if self.notifier is not None:
            try:
                self.notifier(result)
            except Exception as e:
                logger.warning(f"Result notifier raised: {e}")

        if self.history is not None:
            self.history.record(ExecutionRecord(
                flow_id=flow.flow_id,
                user_id=flow.user_id,
                flow_name=flow.flow_name,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc).isoformat(),
                success=result.success,
                request_id=result.request_id,
                emails_found=result.emails_found,
                emails_processed=result.processed_emails,
                attachments_processed=result.saved_attachments,
                total_duration_ms=duration_ms,
                error_message=result.error,
                error_kind=result.error_kind.value if result.error_kind else None,
                version=result.version,
                files=result.files or None,
            ))
        return result
