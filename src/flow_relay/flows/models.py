"""Data models for flow definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

FILE_TYPE_CATEGORIES = ("pdf", "images", "documents")


@dataclass
class FlowConfig:
    """A user-authored automation: Gmail filter -> Drive folder.

    Exactly one of ``senders`` / ``email_filter`` is canonical; ``senders``
    wins when both are set. An empty ``file_types`` means all types.
    ``auto_run`` and ``frequency`` are consumed by an external scheduler.
    """

    flow_id: str
    user_id: str
    flow_name: str
    drive_folder: str
    senders: str | None = None
    email_filter: str | None = None
    file_types: list[str] = field(default_factory=list)
    max_emails: int | None = None
    enable_debug_mode: bool = False
    auto_run: bool = False
    frequency: str = "daily"
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def sender_filter(self) -> str | None:
        """The canonical filter text: senders if present, else the legacy query."""
        if self.senders and self.senders.strip():
            return self.senders.strip()
        if self.email_filter and self.email_filter.strip():
            return self.email_filter.strip()
        return None

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> "FlowConfig":
        """Build from a persisted flow row (snake_case store columns)."""
        return cls(
            flow_id=str(row.get("id") or ""),
            user_id=str(row.get("user_id") or ""),
            flow_name=row.get("flow_name") or "",
            drive_folder=row.get("drive_folder") or "",
            senders=row.get("senders"),
            email_filter=row.get("email_filter"),
            file_types=list(row.get("file_types") or []),
            auto_run=bool(row.get("auto_run", False)),
            frequency=row.get("frequency") or "daily",
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.flow_id,
            "user_id": self.user_id,
            "flow_name": self.flow_name,
            "email_filter": self.email_filter,
            "senders": self.senders,
            "drive_folder": self.drive_folder,
            "file_types": list(self.file_types),
            "auto_run": self.auto_run,
            "frequency": self.frequency,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
