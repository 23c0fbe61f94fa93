"""Data models for job progress notifications."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import dateutil.parser as parser

WEBHOOK_EVENT_TYPE = "status_update"


class ProgressStatus(str, Enum):
    STARTED = "started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStatus.COMPLETED, ProgressStatus.ERROR)


@dataclass
class ProgressEvent:
    """One advisory progress report for a ``request_id``.

    For ``processing`` events ``data`` carries ``current``, ``total`` and
    ``percentage``, and optionally ``fileName`` / ``fileSize`` of the most
    recently saved file.
    """

    request_id: str
    status: ProgressStatus
    message: str = ""
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def percentage(self) -> float | None:
        value = self.data.get("percentage")
        return float(value) if isinstance(value, (int, float)) else None

    @property
    def sent_at(self) -> datetime | None:
        """Parsed ``timestamp``; None when the sender's clock string is unusable."""
        try:
            return parser.isoparse(self.timestamp)
        except (ValueError, TypeError):
            return None

    @classmethod
    def processing(
        cls,
        request_id: str,
        current: int,
        total: int,
        message: str = "",
        **extra: Any,
    ) -> "ProgressEvent":
        percentage = round(current * 100 / total) if total else 100
        data = {"current": current, "total": total, "percentage": percentage}
        data.update(extra)
        return cls(request_id, ProgressStatus.PROCESSING, message, data=data)

    @classmethod
    def from_webhook(cls, body: dict[str, Any]) -> "ProgressEvent":
        """Parse a ``status_update`` webhook body.

        Raises:
            ValueError: ``status`` or ``requestId`` is missing or unknown.
        """
        request_id = body.get("requestId")
        if not request_id:
            raise ValueError("Webhook body is missing requestId")
        try:
            status = ProgressStatus(body.get("status"))
        except ValueError:
            raise ValueError(f"Unknown progress status: {body.get('status')!r}")
        data = body.get("data")
        return cls(
            request_id=str(request_id),
            status=status,
            message=str(body.get("message") or ""),
            timestamp=str(body.get("timestamp") or datetime.now(timezone.utc).isoformat()),
            data=data if isinstance(data, dict) else {},
        )

    def to_webhook(self) -> dict[str, Any]:
        return {
            "type": WEBHOOK_EVENT_TYPE,
            "status": self.status.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "requestId": self.request_id,
            "data": self.data,
        }
