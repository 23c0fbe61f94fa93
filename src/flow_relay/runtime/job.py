"""The attachment-processing job: search mail, save attachments to storage."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from flow_relay.config import RuntimeConfig
from flow_relay.flows.query import build_search_query
from flow_relay.progress.models import ProgressEvent, ProgressStatus
from flow_relay.progress.webhook import WebhookSender
from flow_relay.runtime.base import MailAttachment, Mailbox, MailMessage, MailThread, Storage
from flow_relay.runtime.circuit_breaker import CircuitBreaker
from flow_relay.runtime.rate_limiter import RateLimiter
from flow_relay.runtime.responses import error_response, success_response
from flow_relay.runtime.retry import RetryHandler

logger = logging.getLogger(__name__)

NO_EMAILS_MESSAGE = "No emails found matching the search criteria"
AUTH_METHOD = "two-layer-secret-payload"

_DOCUMENT_EXTENSIONS = re.compile(r"\.(doc|docx|txt|rtf|odt)$")


def matches_file_types(filename: str, mime_type: str, allowed: list[str] | None) -> bool:
    """True when the attachment falls in one of the ``allowed`` categories.

    An empty ``allowed`` accepts everything; unknown categories match all.
    """
    if not allowed:
        return True
    name = (filename or "").lower()
    mime = (mime_type or "").lower()
    for category in allowed:
        if category == "pdf":
            if name.endswith(".pdf") or "pdf" in mime:
                return True
        elif category == "images":
            if mime.startswith("image/"):
                return True
        elif category == "documents":
            if "document" in mime or "text" in mime or _DOCUMENT_EXTENSIONS.search(name):
                return True
        else:
            return True
    return False


@dataclass
class _JobState:
    processed_emails: int = 0
    saved_attachments: int = 0
    files: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    folder_id: str | None = None
    last_file: dict[str, Any] | None = None

    def note_error(self, message: str) -> None:
        if message not in self.errors:
            self.errors.append(message)


class FlowJob:
    """Runs one flow against a mailbox and a storage backend.

    Threads are processed in fixed-size batches with a pause between
    batches. Failures are collected per batch, thread and attachment and
    returned alongside the partial counts. Mail and storage calls each go
    through a rate limiter, a retry handler and their own circuit breaker;
    an OPEN breaker short-circuits to "nothing processed" for that call.

    Args:
        mailbox: Mail backend.
        storage: File storage backend.
        config: Runtime policy values.
        webhook: Sender for progress events; None disables notifications.
        mail_breaker: Breaker for mail reads, shared across jobs.
        storage_breaker: Breaker for storage writes, shared across jobs.
    """

    def __init__(
        self,
        mailbox: Mailbox,
        storage: Storage,
        config: RuntimeConfig | None = None,
        webhook: WebhookSender | None = None,
        mail_breaker: CircuitBreaker | None = None,
        storage_breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.mailbox = mailbox
        self.storage = storage
        self.config = config or RuntimeConfig()
        self.webhook = webhook
        limits = self.config.rate_limit
        self.retry = RetryHandler(self.config.retry, sleep=sleep)
        self.mail_limiter = RateLimiter(
            limits.mail_calls_per_minute, limits.window, limits.max_waits,
            name="Gmail", clock=clock, sleep=sleep,
        )
        self.storage_limiter = RateLimiter(
            limits.storage_calls_per_minute, limits.window, limits.max_waits,
            name="Drive", clock=clock, sleep=sleep,
        )
        self.mail_breaker = mail_breaker or CircuitBreaker("mail", self.config.circuit_breaker, clock)
        self.storage_breaker = storage_breaker or CircuitBreaker(
            "storage", self.config.circuit_breaker, clock
        )
        self._sleep = sleep
        self._clock = clock

    def run(
        self,
        user_config: dict[str, Any],
        user_email: str | None = None,
        request_id: str = "",
        webhook_url: str | None = None,
    ) -> dict[str, Any]:
        """Execute the flow and return the runtime response envelope."""
        start = self._clock()
        flow_name = user_config.get("flowName") or "Flow"
        self._notify(webhook_url, ProgressEvent(
            request_id, ProgressStatus.STARTED, f"Starting flow '{flow_name}'",
        ))

        try:
            query = user_config.get("searchQuery") or build_search_query(
                senders=user_config.get("senders"),
                fallback_sender=user_email,
                recency_days=self.config.recency_days,
            )
            max_emails = int(user_config.get("maxEmails") or self.config.default_max_emails)

            threads = self.mail_breaker.call(
                lambda: self.retry.execute(
                    lambda: self._search(query, max_emails), context=f"Gmail search '{query}'"
                ),
                fallback=lambda: None,
            )
            if threads is None:
                return self._fail(self.mail_breaker.unavailable_message, request_id, webhook_url, start)

            if not threads:
                logger.info(f"No threads matched '{query}' for {request_id}")
                self._notify(webhook_url, ProgressEvent(
                    request_id, ProgressStatus.COMPLETED, NO_EMAILS_MESSAGE,
                    data={"emailsFound": 0, "savedAttachments": 0},
                ))
                return success_response(
                    NO_EMAILS_MESSAGE,
                    self._data(flow_name, user_email, query, 0, _JobState()),
                    processing_time=self._elapsed(start),
                    version=self.config.version,
                )

            state = _JobState()
            self._process_batches(threads, user_config, state, request_id, webhook_url)
        except Exception as e:
            logger.error(f"Flow '{flow_name}' ({request_id}) failed: {e}")
            return self._fail(f"Flow execution failed: {e}", request_id, webhook_url, start)

        message = (
            f"Processed {state.processed_emails} emails and saved "
            f"{state.saved_attachments} attachments"
        )
        if state.errors:
            message += f" with {len(state.errors)} error(s)"
        data = self._data(flow_name, user_email, query, len(threads), state)
        self._notify(webhook_url, ProgressEvent(
            request_id, ProgressStatus.COMPLETED, message,
            data={
                "emailsFound": len(threads),
                "processedEmails": state.processed_emails,
                "savedAttachments": state.saved_attachments,
            },
        ))
        return success_response(
            message, data, processing_time=self._elapsed(start), version=self.config.version
        )

    def _process_batches(
        self,
        threads: list[MailThread],
        user_config: dict[str, Any],
        state: _JobState,
        request_id: str,
        webhook_url: str | None,
    ) -> None:
        batch_size = max(self.config.rate_limit.batch_size, 1)
        total = len(threads)
        logger.info(f"Processing {total} threads in batches of {batch_size}")

        for index in range(0, total, batch_size):
            batch_number = index // batch_size + 1
            batch = threads[index:index + batch_size]
            try:
                for offset, thread in enumerate(batch):
                    self._process_thread(thread, user_config, state)
                    extra = {}
                    if state.last_file:
                        extra = {
                            "fileName": state.last_file["savedName"],
                            "fileSize": state.last_file["size"],
                        }
                    current = index + offset + 1
                    self._notify(webhook_url, ProgressEvent.processing(
                        request_id, current, total,
                        f"Processed {current} of {total} threads", **extra,
                    ))
            except Exception as e:
                logger.error(f"Batch {batch_number} failed: {e}")
                state.note_error(f"Batch {batch_number}: {e}")

            if index + batch_size < total:
                self._sleep(self.config.rate_limit.delay_between_batches)

    def _process_thread(self, thread: MailThread, user_config: dict[str, Any], state: _JobState) -> None:
        try:
            messages = self.mail_breaker.call(
                lambda: self.retry.execute(
                    lambda: self._read_thread(thread), context=f"Reading thread {thread.thread_id}"
                ),
                fallback=lambda: None,
            )
        except Exception as e:
            state.note_error(f"Thread {thread.thread_id}: {e}")
            return
        if messages is None:
            state.note_error(self.mail_breaker.unavailable_message)
            return

        allowed = user_config.get("fileTypes") or []
        for message in messages:
            state.processed_emails += 1
            for attachment in message.attachments:
                if not matches_file_types(attachment.filename, attachment.mime_type, allowed):
                    continue
                try:
                    saved = self._save_attachment(message, attachment, user_config, state)
                except Exception as e:
                    logger.warning(f"Attachment {attachment.filename} failed: {e}")
                    state.note_error(f"{attachment.filename}: {e}")
                    continue
                if saved:
                    state.saved_attachments += 1
                    state.files.append(saved)
                    state.last_file = saved

    def _save_attachment(
        self,
        message: MailMessage,
        attachment: MailAttachment,
        user_config: dict[str, Any],
        state: _JobState,
    ) -> dict[str, Any] | None:
        folder_id = self._ensure_folder(user_config.get("driveFolder") or "", state)
        if folder_id is None:
            state.note_error(self.storage_breaker.unavailable_message)
            return None

        data = self.mail_breaker.call(
            lambda: self.retry.execute(
                lambda: self._read_attachment(message, attachment),
                context=f"Downloading attachment {attachment.filename}",
            ),
            fallback=lambda: None,
        )
        if data is None:
            state.note_error(self.mail_breaker.unavailable_message)
            return None

        timestamp = re.sub(r"[:.+]", "-", datetime.now(timezone.utc).isoformat())
        saved_name = f"{user_config.get('flowName') or 'Flow'}_{timestamp}_{attachment.filename}"
        stored = self.storage_breaker.call(
            lambda: self.retry.execute(
                lambda: self._write_file(folder_id, saved_name, attachment.mime_type, data),
                context=f"Saving attachment {attachment.filename}",
            ),
            fallback=lambda: None,
        )
        if stored is None:
            state.note_error(self.storage_breaker.unavailable_message)
            return None

        return {
            "originalName": attachment.filename,
            "savedName": saved_name,
            "size": attachment.size or len(data),
            "mimeType": attachment.mime_type,
            "fileId": stored.file_id,
            "fileUrl": stored.url,
        }

    def _ensure_folder(self, path: str, state: _JobState) -> str | None:
        if state.folder_id is None:
            state.folder_id = self.storage_breaker.call(
                lambda: self.retry.execute(
                    lambda: self._create_folder(path), context=f"Creating folder {path}"
                ),
                fallback=lambda: None,
            )
        return state.folder_id

    def _search(self, query: str, max_emails: int) -> list[MailThread]:
        self.mail_limiter.acquire()
        return self.mailbox.search(query, max_emails)

    def _read_thread(self, thread: MailThread) -> list[MailMessage]:
        self.mail_limiter.acquire()
        return self.mailbox.get_messages(thread)

    def _read_attachment(self, message: MailMessage, attachment: MailAttachment) -> bytes:
        self.mail_limiter.acquire()
        return self.mailbox.get_attachment_data(message, attachment)

    def _create_folder(self, path: str) -> str:
        self.storage_limiter.acquire()
        return self.storage.get_or_create_folder(path)

    def _write_file(self, folder_id: str, name: str, mime_type: str, data: bytes):
        self.storage_limiter.acquire()
        return self.storage.save_file(folder_id, name, mime_type, data)

    def _data(
        self,
        flow_name: str,
        user_email: str | None,
        query: str,
        emails_found: int,
        state: _JobState,
    ) -> dict[str, Any]:
        return {
            "emailsFound": emails_found,
            "processedEmails": state.processed_emails,
            "savedAttachments": state.saved_attachments,
            "processedAttachments": state.files,
            "errors": state.errors,
            "flowName": flow_name,
            "userEmail": user_email,
            "searchQuery": query,
            "authMethod": AUTH_METHOD,
        }

    def _fail(
        self,
        message: str,
        request_id: str,
        webhook_url: str | None,
        start: float,
    ) -> dict[str, Any]:
        self._notify(webhook_url, ProgressEvent(
            request_id, ProgressStatus.ERROR, message, data={"error": {"message": message}},
        ))
        return error_response(
            message, processing_time=self._elapsed(start), version=self.config.version
        )

    def _notify(self, webhook_url: str | None, event: ProgressEvent) -> None:
        if self.webhook is None or not webhook_url or not event.request_id:
            return
        try:
            self.webhook.send(webhook_url, event)
        except Exception as e:
            logger.warning(f"Progress notification for {event.request_id} dropped: {e}")

    def _elapsed(self, start: float) -> float:
        return round(self._clock() - start, 3)
