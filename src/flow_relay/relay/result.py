"""Terminal outcome of one flow execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flow_relay.exceptions import ErrorKind

DEFAULT_ERROR_MESSAGE = "Flow execution failed"

_GUIDANCE = {
    ErrorKind.AUTHENTICATION: "Please sign out and sign in again to re-authenticate.",
    ErrorKind.PERMISSION: "Grant the app access to Gmail and Google Drive, then retry.",
    ErrorKind.NETWORK: "Could not reach the flow service. Check your connection and retry.",
    ErrorKind.TIMEOUT: "The flow service did not answer in time. Try again in a few minutes.",
}


@dataclass
class FlowExecutionResult:
    """What the UI renders when a flow run finishes. Never persisted as-is."""

    success: bool
    message: str = ""
    emails_found: int = 0
    processed_emails: int = 0
    saved_attachments: int = 0
    files: list[dict[str, Any]] = field(default_factory=list)
    errors: list[Any] = field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None
    status_code: int | None = None
    raw_body: str | None = None
    request_id: str | None = None
    version: str | None = None
    processing_time: float | None = None

    @classmethod
    def failure(
        cls,
        error: str | None,
        kind: ErrorKind,
        status_code: int | None = None,
        raw_body: str | None = None,
        request_id: str | None = None,
    ) -> "FlowExecutionResult":
        return cls(
            success=False,
            error=error or DEFAULT_ERROR_MESSAGE,
            error_kind=kind,
            status_code=status_code,
            raw_body=raw_body,
            request_id=request_id,
        )

    def summary(self) -> str:
        """Single human-readable line for the terminal notification."""
        if self.success:
            if self.emails_found == 0 and self.message:
                return self.message
            return (
                f"Found {self.emails_found} emails, processed {self.processed_emails}, "
                f"saved {self.saved_attachments} attachments"
            )
        guidance = _GUIDANCE.get(self.error_kind) if self.error_kind else None
        if guidance:
            return f"{self.error} {guidance}"
        return self.error or DEFAULT_ERROR_MESSAGE

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.success:
            out.update({
                "message": self.message,
                "emailsFound": self.emails_found,
                "processedEmails": self.processed_emails,
                "savedAttachments": self.saved_attachments,
                "files": self.files,
                "errors": self.errors,
            })
        else:
            out.update({
                "error": self.error,
                "errorKind": self.error_kind.value if self.error_kind else None,
                "statusCode": self.status_code,
            })
        out["requestId"] = self.request_id
        return out
