"""Response envelopes returned by the job runtime."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from flow_relay.config import RUNTIME_VERSION

HEALTH_FEATURES = [
    "retry-logic",
    "rate-limiting",
    "circuit-breaker",
    "batch-processing",
    "progress-webhooks",
]


def success_response(
    message: str,
    data: dict[str, Any] | None = None,
    processing_time: float = 0,
    version: str = RUNTIME_VERSION,
) -> dict[str, Any]:
    response: dict[str, Any] = {
        "status": "success",
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": version,
        "processing_time": processing_time,
    }
    if data is not None:
        response["data"] = data
    return response


def error_response(
    message: str,
    details: Any = None,
    processing_time: float = 0,
    version: str = RUNTIME_VERSION,
) -> dict[str, Any]:
    response: dict[str, Any] = {
        "status": "error",
        "message": message or "Execution failed",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": version,
        "processing_time": processing_time,
    }
    if details is not None:
        response["details"] = details
    return response


def health_response(version: str = RUNTIME_VERSION) -> dict[str, Any]:
    response = success_response(
        "Job runtime is healthy and ready",
        {"version": version, "auth_method": "two-layer-secret-payload", "features": HEALTH_FEATURES},
        version=version,
    )
    response["features"] = list(HEALTH_FEATURES)
    return response
