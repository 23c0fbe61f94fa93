"""Relay endpoint logic: forwards submissions to the remote job runtime."""

from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

import httpx

from flow_relay.config import ForwarderConfig
from flow_relay.flows.payload import PayloadBuilder
from flow_relay.relay.response import NESTED_RESPONSE_KEY

logger = logging.getLogger(__name__)

USER_AGENT = "FlowRelay-Forwarder/1.0"
AUTH_METHOD = "two-layer-secret-payload"


class RelayForwarder:
    """Wraps an inbound submission in the two-layer secret form and forwards it.

    Framework-agnostic: ``forward`` takes the decoded (or raw) request body
    and returns ``(http_status, response_body)``. It never raises.

    Args:
        config: Remote runtime URL, shared secret and inner timeout.
        transport: Optional ``httpx.AsyncBaseTransport`` (tests use a mock).
    """

    def __init__(
        self,
        config: ForwarderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._transport = transport

    async def forward(
        self,
        body: Any,
        user_email: str | None = None,
    ) -> tuple[int, dict[str, Any]]:
        start = time.monotonic()

        if not self.config.script_url or not self.config.secret:
            logger.error("Forwarder is missing its remote URL or shared secret")
            return 500, {"error": "Configuration error: remote job URL or secret not set"}

        try:
            request = self._decode(body)
        except ValueError as e:
            return 400, {"error": "Invalid JSON in request body", "details": str(e)}

        if not request.get("action"):
            return 400, {
                "error": "Missing required field: action",
                "received": sorted(request.keys()),
            }

        debug_info = dict(request.get("debug_info") or {})
        request_id = debug_info.get("request_id") or f"relay-{uuid.uuid4().hex[:12]}"
        debug_info.update({
            "request_id": request_id,
            "has_user_email": bool(user_email),
            "auth_method": AUTH_METHOD,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        inner = {
            "action": request["action"],
            "userEmail": user_email or request.get("userEmail"),
            "userConfig": request.get("userConfig") or {},
            "debug_info": debug_info,
        }
        if request.get("webhookUrl"):
            inner["webhookUrl"] = request["webhookUrl"]

        envelope = PayloadBuilder.wrap_with_secret(inner, self.config.secret)
        logger.info(
            f"Forwarding {request['action']} {request_id} to remote job "
            f"({len(json.dumps(envelope))} bytes)"
        )
        logger.debug(f"Forward body for {request_id}: {json.dumps(PayloadBuilder.redact(envelope))}")

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.config.timeout,
                follow_redirects=True,
            ) as client:
                response = await client.post(
                    self.config.script_url,
                    json=envelope,
                    headers={"User-Agent": USER_AGENT, "X-Request-ID": request_id},
                )
        except httpx.TimeoutException:
            logger.error(f"Remote job timed out for {request_id}")
            return 504, {
                "error": f"Remote job request timeout ({self.config.timeout:g}s)",
                "request_id": request_id,
            }
        except httpx.TransportError as e:
            logger.error(f"Remote job unreachable for {request_id}: {e}")
            return 502, {"error": f"Remote job unreachable: {e}", "request_id": request_id}

        total_duration = int((time.monotonic() - start) * 1000)
        text = response.text

        if not response.is_success:
            stripped = text.lstrip().lower()
            is_html = stripped.startswith("<!doctype") or stripped.startswith("<html")
            reason = (
                "deployment access issue - check who can run the remote job"
                if is_html
                else response.reason_phrase or "Unknown error"
            )
            logger.error(f"Remote job returned HTTP {response.status_code} for {request_id}")
            return 502, {
                "error": f"Remote job error ({response.status_code}): {reason}",
                "details": text[:200],
                "request_id": request_id,
                "upstream_status": response.status_code,
            }

        try:
            data = json.loads(text)
        except ValueError:
            logger.error(f"Remote job returned non-JSON for {request_id}: {text[:200]}")
            return 502, {
                "error": "Invalid JSON response from remote job",
                "details": text[:200],
                "request_id": request_id,
            }

        status = data.get("status") if isinstance(data, dict) else None
        if status == "success":
            return 200, {
                "success": True,
                "message": data.get("message") or "Flow processed successfully",
                "request_id": request_id,
                "auth_method": AUTH_METHOD,
                "user_email": user_email,
                NESTED_RESPONSE_KEY: data,
                "performance_metrics": {
                    "total_duration": total_duration,
                    "apps_script_processing_time": data.get("processing_time") or 0,
                },
            }
        if status == "error":
            return 200, {
                "success": False,
                "error": "Remote job execution failed",
                "details": data.get("message") or "Unknown remote job error",
                "request_id": request_id,
                NESTED_RESPONSE_KEY: data,
                "total_duration": total_duration,
            }

        logger.error(f"Unexpected remote job response for {request_id}: {text[:200]}")
        return 502, {
            "error": "Unexpected remote job response format",
            "details": f"Received status: {status or 'undefined'}",
            "request_id": request_id,
            "total_duration": total_duration,
        }

    def _decode(self, body: Any) -> dict[str, Any]:
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8", errors="replace")
        if isinstance(body, str):
            if len(body) > self.config.max_body_bytes:
                raise ValueError(
                    f"Request payload too large (>{self.config.max_body_bytes} bytes)"
                )
            body = json.loads(body)
        if not isinstance(body, dict):
            raise ValueError("Request body must be a JSON object")
        return body
