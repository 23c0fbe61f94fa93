"""Authenticated relay client with timeout, fallback transport and backoff."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable

from flow_relay.config import RelayConfig
from flow_relay.exceptions import (
    AuthenticationError,
    FlowRelayError,
    NetworkError,
    PermissionDeniedError,
    RelayTimeoutError,
)
from flow_relay.flows.payload import PayloadBuilder
from flow_relay.relay.transport import (
    DirectHttpTransport,
    FunctionsTransport,
    RawResponse,
    Transport,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]

# Lower-cased fragments the relay gateway uses in 4xx bodies for rejected tokens.
_AUTH_MARKERS = ("invalid auth_token", "unauthorized", "invalid jwt", "jwt expired")


class RelayClient:
    """Submits job payloads to the relay endpoint.

    The first transport-level failure is retried once over the fallback
    transport; the remaining attempts use the primary transport. Every retry
    waits ``base * 2^(attempt-1) + jitter`` first. Application-level answers
    (any HTTP response) are returned, except 401/403 which raise
    ``AuthenticationError`` / ``PermissionDeniedError``.

    Args:
        config: Relay location, timeout and retry policy.
        token_provider: Coroutine returning the caller's current bearer token.
        primary: Transport tried first (defaults to ``FunctionsTransport``).
        fallback: Transport for the one fallback attempt (defaults to
            ``DirectHttpTransport`` when ``config.use_fallback``).
        sleep: Awaitable sleep used between attempts.
        jitter: Returns a value in [0, 1) scaled by the retry jitter.
    """

    def __init__(
        self,
        config: RelayConfig,
        token_provider: TokenProvider,
        primary: Transport | None = None,
        fallback: Transport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        self.config = config
        self._token_provider = token_provider
        self.primary = primary or FunctionsTransport(config)
        if not config.use_fallback:
            self.fallback = None
        else:
            self.fallback = fallback or DirectHttpTransport(config)
        self._sleep = sleep
        self._jitter = jitter

    async def submit(self, payload: dict[str, Any]) -> RawResponse:
        """POST ``payload`` to the relay and return its HTTP answer.

        Raises:
            AuthenticationError: Relay rejected the bearer token.
            PermissionDeniedError: Relay answered 403.
            NetworkError: Every attempt failed at the transport level
                (``RelayTimeoutError`` when the last one hit the deadline).
        """
        request_id = (payload.get("debug_info") or {}).get("request_id", "-")
        retry = self.config.retry
        fallback_used = False
        last_error: NetworkError | None = None

        for attempt in range(1, retry.max_retries + 1):
            transport = self.primary
            if last_error is not None and not fallback_used and self.fallback is not None:
                transport = self.fallback
                fallback_used = True

            access_token = await self._token_provider()
            start = time.monotonic()
            try:
                response = await asyncio.wait_for(
                    transport.send(payload, access_token, self.config.timeout),
                    timeout=self.config.timeout,
                )
            except asyncio.TimeoutError:
                last_error = RelayTimeoutError(
                    f"Relay call exceeded the {self.config.timeout:g}s deadline"
                )
            except NetworkError as e:
                last_error = e
            else:
                duration = (time.monotonic() - start) * 1000
                logger.info(
                    f"Relay attempt {attempt} for {request_id} via {transport.name}: "
                    f"HTTP {response.status_code} in {duration:.0f}ms"
                )
                self._raise_for_auth(response)
                return response

            duration = (time.monotonic() - start) * 1000
            logger.warning(
                f"Relay attempt {attempt}/{retry.max_retries} for {request_id} via "
                f"{transport.name} failed after {duration:.0f}ms: {last_error}"
            )
            if attempt < retry.max_retries:
                delay = retry.delay_for(attempt, self._jitter())
                logger.warning(f"Retrying {request_id} in {delay:.2f}s")
                await self._sleep(delay)

        logger.error(f"Relay submission {request_id} failed after {retry.max_retries} attempts")
        raise last_error

    async def health_check(self) -> bool:
        """True when the relay and remote job report healthy."""
        payload = PayloadBuilder(webhook_url=self.config.webhook_url).build_health_check()
        try:
            response = await self.submit(payload)
        except FlowRelayError as e:
            logger.warning(f"Health check failed: {e}")
            return False
        if not response.ok or not isinstance(response.body, dict):
            return False
        body = response.body
        inner = body.get("apps_script_response")
        if body.get("success") is True:
            return True
        if isinstance(inner, dict) and inner.get("status") == "success":
            return True
        return body.get("status") == "success"

    async def aclose(self) -> None:
        await self.primary.aclose()
        if self.fallback is not None:
            await self.fallback.aclose()

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @staticmethod
    def _raise_for_auth(response: RawResponse) -> None:
        if response.ok:
            return
        text = response.text[:200]
        if response.status_code == 401 or (
            response.status_code < 500
            and any(marker in response.text.lower() for marker in _AUTH_MARKERS)
        ):
            raise AuthenticationError(
                f"Relay rejected credentials (HTTP {response.status_code}): {text}",
                status=response.status_code,
            )
        if response.status_code == 403:
            raise PermissionDeniedError(
                f"Relay denied access (HTTP 403): {text}", status=403
            )
