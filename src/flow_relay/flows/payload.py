"""Job-submission payload construction."""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable

from flow_relay.exceptions import ValidationError
from flow_relay.flows.models import FlowConfig
from flow_relay.flows.query import build_search_query

logger = logging.getLogger(__name__)

PROCESS_ACTION = "process_gmail_flow"
HEALTH_CHECK_ACTION = "health_check"

DEFAULT_MAX_EMAILS = 10
MAX_EMAILS_CEILING = 500

_REDACTED = "***"


def make_request_id(flow_id: str, submitted_ms: int) -> str:
    """Correlation key for one submission attempt: ``flow-<flowId>-<unixMillis>``."""
    return f"flow-{flow_id}-{submitted_ms}"


class PayloadBuilder:
    """Builds the canonical job payload from a ``FlowConfig``.

    Args:
        webhook_url: Progress callback URL embedded in every payload.
        max_emails: Cap applied when the flow does not set its own.
        recency_days: ``newer_than`` bound and'd into every search.
        request_source: Tag recorded in ``debug_info``.
        clock: Returns the submission time in seconds since the epoch.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        max_emails: int = DEFAULT_MAX_EMAILS,
        recency_days: int = 7,
        request_source: str = "flow-relay",
        auth_method: str = "shared-secret",
        clock: Callable[[], float] = time.time,
    ):
        self.webhook_url = webhook_url
        self.max_emails = max_emails
        self.recency_days = recency_days
        self.request_source = request_source
        self.auth_method = auth_method
        self._clock = clock

    def build(self, flow: FlowConfig, user_email: str | None = None) -> dict[str, Any]:
        """Validate ``flow`` and return the relay submission body.

        Raises:
            ValidationError: A required field is missing or blank. No network
                call has been attempted at this point.
        """
        self.validate(flow)

        request_id = make_request_id(flow.flow_id, int(self._clock() * 1000))
        search_query = build_search_query(
            senders=flow.senders,
            email_filter=flow.email_filter,
            fallback_sender=user_email,
            recency_days=self.recency_days,
        )

        payload: dict[str, Any] = {
            "action": PROCESS_ACTION,
            "user_id": flow.user_id,
            "userConfig": {
                "senders": flow.sender_filter or "",
                "searchQuery": search_query,
                "driveFolder": flow.drive_folder.strip(),
                "fileTypes": list(flow.file_types),
                "flowName": flow.flow_name.strip(),
                "maxEmails": self._resolve_max_emails(flow.max_emails),
                "enableDebugMode": bool(flow.enable_debug_mode),
            },
            "debug_info": {
                "request_id": request_id,
                "auth_method": self.auth_method,
                "request_source": self.request_source,
                "flow_id": flow.flow_id,
            },
        }
        if self.webhook_url:
            payload["webhookUrl"] = self.webhook_url
        if user_email:
            payload["userEmail"] = user_email

        logger.info(
            f"Built payload {request_id} for flow '{flow.flow_name}' "
            f"(query: {search_query})"
        )
        logger.debug(f"Payload {request_id}: {self.redact(payload)}")
        return payload

    def build_health_check(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "action": HEALTH_CHECK_ACTION,
            "user_id": "health-check-user",
            "userConfig": {
                "flowName": "Health Check",
                "driveFolder": "Health Check",
                "fileTypes": ["pdf"],
                "maxEmails": 1,
                "enableDebugMode": True,
            },
        }
        if self.webhook_url:
            payload["webhookUrl"] = self.webhook_url
        return payload

    @staticmethod
    def validate(flow: FlowConfig) -> None:
        missing = []
        if not (flow.user_id or "").strip():
            missing.append("user ID")
        if not (flow.flow_id or "").strip():
            missing.append("flow ID")
        if not (flow.drive_folder or "").strip():
            missing.append("drive folder")
        if not (flow.flow_name or "").strip():
            missing.append("flow name")
        if missing:
            raise ValidationError(
                f"Missing required flow configuration: {', '.join(missing)}"
            )

    @staticmethod
    def wrap_with_secret(payload: dict[str, Any], secret: str) -> dict[str, Any]:
        """Two-layer body for shared-secret auth: ``{secret, payload}``."""
        return {"secret": secret, "payload": payload}

    @staticmethod
    def redact(body: dict[str, Any]) -> dict[str, Any]:
        """Copy of ``body`` that is safe to log."""
        safe = copy.deepcopy(body)
        if "secret" in safe:
            safe["secret"] = _REDACTED
        for key in ("access_token", "auth_token", "provider_token"):
            if key in safe:
                safe[key] = _REDACTED
        inner = safe.get("payload")
        if isinstance(inner, dict):
            safe["payload"] = PayloadBuilder.redact(inner)
        return safe

    def _resolve_max_emails(self, requested: int | None) -> int:
        if not requested or requested <= 0:
            return self.max_emails
        return min(requested, MAX_EMAILS_CEILING)
