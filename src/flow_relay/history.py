"""Optional execution-history log backed by SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS flow_execution_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    flow_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    flow_name TEXT NOT NULL,
    request_id TEXT,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    success INTEGER NOT NULL,
    emails_found INTEGER DEFAULT 0,
    emails_processed INTEGER DEFAULT 0,
    attachments_processed INTEGER DEFAULT 0,
    total_duration_ms INTEGER,
    error_message TEXT,
    error_kind TEXT,
    version TEXT,
    files TEXT
)
"""


@dataclass
class ExecutionRecord:
    """Summary of one flow run."""

    flow_id: str
    user_id: str
    flow_name: str
    started_at: str
    success: bool
    request_id: str | None = None
    completed_at: str | None = None
    emails_found: int = 0
    emails_processed: int = 0
    attachments_processed: int = 0
    total_duration_ms: int | None = None
    error_message: str | None = None
    error_kind: str | None = None
    version: str | None = None
    files: list[dict] | None = None


class ExecutionHistory:
    """Durable run summaries. Write failures never propagate to the caller.

    Args:
        db_path: SQLite file, or ``":memory:"``.
    """

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(_SCHEMA)
        self._conn.commit()

    def record(self, entry: ExecutionRecord) -> bool:
        """Insert ``entry``. Returns False (after logging) when the write fails."""
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO flow_execution_logs (
                        flow_id, user_id, flow_name, request_id, started_at,
                        completed_at, success, emails_found, emails_processed,
                        attachments_processed, total_duration_ms, error_message,
                        error_kind, version, files
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.flow_id,
                        entry.user_id,
                        entry.flow_name,
                        entry.request_id,
                        entry.started_at,
                        entry.completed_at,
                        int(entry.success),
                        entry.emails_found,
                        entry.emails_processed,
                        entry.attachments_processed,
                        entry.total_duration_ms,
                        entry.error_message,
                        entry.error_kind,
                        entry.version,
                        json.dumps(entry.files) if entry.files is not None else None,
                    ),
                )
                self._conn.commit()
            return True
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.warning(f"Failed to save execution log for {entry.flow_id}: {e}")
            return False

    def recent(self, user_id: str, limit: int = 10) -> list[ExecutionRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM flow_execution_logs WHERE user_id = ? "
                "ORDER BY started_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [
            ExecutionRecord(
                flow_id=row["flow_id"],
                user_id=row["user_id"],
                flow_name=row["flow_name"],
                started_at=row["started_at"],
                success=bool(row["success"]),
                request_id=row["request_id"],
                completed_at=row["completed_at"],
                emails_found=row["emails_found"],
                emails_processed=row["emails_processed"],
                attachments_processed=row["attachments_processed"],
                total_duration_ms=row["total_duration_ms"],
                error_message=row["error_message"],
                error_kind=row["error_kind"],
                version=row["version"],
                files=json.loads(row["files"]) if row["files"] else None,
            )
            for row in rows
        ]

    def close(self) -> None:
        self._conn.close()
