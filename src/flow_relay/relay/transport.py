"""HTTP transports for reaching the relay endpoint."""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from flow_relay.config import RelayConfig
from flow_relay.exceptions import NetworkError, RelayTimeoutError

logger = logging.getLogger(__name__)

USER_AGENT = "FlowRelay/1.0"


@dataclass
class RawResponse:
    """An HTTP answer from the relay, body parsed when it is JSON."""

    status_code: int
    text: str
    body: Any = None
    transport: str = ""
    duration_ms: float = 0.0
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @classmethod
    def from_httpx(cls, response: httpx.Response, transport: str, duration_ms: float) -> "RawResponse":
        text = response.text
        try:
            body = json.loads(text) if text else None
        except ValueError:
            body = None
        return cls(
            status_code=response.status_code,
            text=text,
            body=body,
            transport=transport,
            duration_ms=duration_ms,
            headers=dict(response.headers),
        )


class Transport(ABC):
    """One way of delivering a payload to the relay."""

    name: str = "transport"

    @abstractmethod
    async def send(
        self,
        payload: dict[str, Any],
        access_token: str,
        timeout: float,
    ) -> RawResponse:
        """POST ``payload``; raise ``NetworkError``/``RelayTimeoutError`` on transport failure."""
        ...

    async def aclose(self) -> None:
        return None


class FunctionsTransport(Transport):
    """Primary transport: SDK-style function invocation over a shared client.

    The gateway API key is bound once on the client; the caller's session
    token is attached to each invocation.

    Args:
        config: Relay location and gateway key.
        client: Optional pre-built ``httpx.AsyncClient``.
    """

    name = "functions"

    def __init__(self, config: RelayConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/"),
                headers={"apikey": self.config.api_key, "User-Agent": USER_AGENT},
            )
        return self._client

    async def invoke(
        self,
        function_name: str,
        body: dict[str, Any],
        access_token: str,
        timeout: float,
    ) -> RawResponse:
        start = time.monotonic()
        try:
            response = await self.client.post(
                f"/functions/v1/{function_name}",
                json=body,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise RelayTimeoutError(f"Relay invocation timed out after {timeout}s: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Relay invocation failed: {e}") from e
        return RawResponse.from_httpx(response, self.name, (time.monotonic() - start) * 1000)

    async def send(self, payload, access_token, timeout):
        return await self.invoke(self.config.function_name, payload, access_token, timeout)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class DirectHttpTransport(Transport):
    """Fallback transport: one-shot low-level POST with explicit headers.

    Args:
        config: Relay location and gateway key.
        transport: Optional ``httpx.AsyncBaseTransport`` for the per-call client.
    """

    name = "direct"

    def __init__(
        self,
        config: RelayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._transport = transport

    async def send(self, payload, access_token, timeout):
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
            "apikey": self.config.api_key,
            "User-Agent": USER_AGENT,
            "x-debug-source": self.config.request_source,
        }
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.post(
                    self.config.function_url,
                    content=json.dumps(payload),
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            raise RelayTimeoutError(f"Direct relay call timed out after {timeout}s: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Direct relay call failed: {e}") from e
        return RawResponse.from_httpx(response, self.name, (time.monotonic() - start) * 1000)
