"""Normalizes relay and remote-job answers into ``FlowExecutionResult``."""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from flow_relay.exceptions import ErrorKind
from flow_relay.relay.result import DEFAULT_ERROR_MESSAGE, FlowExecutionResult
from flow_relay.relay.transport import RawResponse

logger = logging.getLogger(__name__)

RAW_BODY_LIMIT = 500
NESTED_RESPONSE_KEY = "apps_script_response"
_STATUSES = ("success", "error")
_MAX_NESTING = 4

# Canonical name first, legacy aliases after.
_EMAILS_FOUND = ("emailsFound",)
_PROCESSED_EMAILS = ("processedEmails", "processed")
_SAVED_ATTACHMENTS = ("savedAttachments", "attachments")
_FILES = ("processedAttachments", "files")


class ResponseProcessor:
    """Pure, total mapping from any relay answer to a ``FlowExecutionResult``.

    Accepts a ``RawResponse``, an already-decoded dict, a JSON string or
    bytes, or anything else (including None). The job's own
    ``status: success|error`` envelope may be flat or nested under
    ``apps_script_response``; the innermost one wins. Never raises.
    """

    def process(self, raw: Any) -> FlowExecutionResult:
        try:
            return self._process(raw)
        except Exception as e:
            text = _truncate(repr(raw))
            logger.error(f"Unprocessable relay response ({e}): {text}")
            return FlowExecutionResult.failure(
                "Unexpected response format", ErrorKind.UNEXPECTED_FORMAT, raw_body=text
            )

    def _process(self, raw: Any) -> FlowExecutionResult:
        status_code = None
        text = None
        body = raw

        if isinstance(raw, RawResponse):
            status_code = raw.status_code
            text = raw.text
            body = raw.body if raw.body is not None else raw.text

        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8", errors="replace")
        if isinstance(body, str):
            text = body
            try:
                body = json.loads(body)
            except ValueError:
                return self._unexpected(status_code, text)

        if not isinstance(body, dict):
            return self._unexpected(status_code, text if text is not None else repr(body))

        request_id = _request_id(body)
        envelope = _locate_envelope(body)

        if envelope is not None and envelope["status"] == "success":
            data = envelope.get("data")
            if not isinstance(data, dict):
                data = {}
            files = _first(data, _FILES)
            errors = data.get("errors")
            return FlowExecutionResult(
                success=True,
                message=_text(envelope.get("message")) or _text(body.get("message")) or "",
                emails_found=_count(data, _EMAILS_FOUND),
                processed_emails=_count(data, _PROCESSED_EMAILS),
                saved_attachments=_count(data, _SAVED_ATTACHMENTS),
                files=files if isinstance(files, list) else [],
                errors=errors if isinstance(errors, list) else [],
                status_code=status_code,
                request_id=request_id,
                version=_text(envelope.get("version")),
                processing_time=_number(envelope.get("processing_time")),
            )

        if envelope is not None:
            message = (
                _text(envelope.get("message"))
                or _text(envelope.get("details"))
                or DEFAULT_ERROR_MESSAGE
            )
            logger.warning(f"Remote job reported error for {request_id}: {message}")
            result = FlowExecutionResult.failure(
                message, ErrorKind.UPSTREAM, status_code=status_code, request_id=request_id
            )
            result.version = _text(envelope.get("version"))
            return result

        relay_error = _text(body.get("error"))
        if relay_error:
            details = _text(body.get("details"))
            message = f"{relay_error}: {details}" if details else relay_error
            logger.warning(f"Relay reported error for {request_id}: {message}")
            return FlowExecutionResult.failure(
                message,
                _kind_for_status(status_code),
                status_code=status_code,
                raw_body=_truncate(text) if text else None,
                request_id=request_id,
            )

        return self._unexpected(status_code, text if text is not None else json.dumps(body))

    @staticmethod
    def _unexpected(status_code: int | None, text: str | None) -> FlowExecutionResult:
        raw_body = _truncate(text or "")
        logger.error(f"Unexpected relay response (HTTP {status_code}): {raw_body}")
        message = "Unexpected response format"
        if status_code is not None and not 200 <= status_code < 300:
            message = f"Unexpected response format (HTTP {status_code})"
        return FlowExecutionResult.failure(
            message, ErrorKind.UNEXPECTED_FORMAT, status_code=status_code, raw_body=raw_body
        )


def _locate_envelope(body: dict) -> dict | None:
    """Innermost dict carrying ``status`` in (success, error)."""
    found = None
    node: Any = body
    for _ in range(_MAX_NESTING):
        if not isinstance(node, dict):
            break
        if node.get("status") in _STATUSES:
            found = node
        nested = node.get(NESTED_RESPONSE_KEY)
        if nested is None and isinstance(node.get("debug_info"), dict):
            nested = node["debug_info"].get(NESTED_RESPONSE_KEY)
        node = nested
    return found


def _request_id(body: dict) -> str | None:
    value = body.get("request_id") or body.get("requestId")
    if value is None and isinstance(body.get("debug_info"), dict):
        value = body["debug_info"].get("request_id")
    return str(value) if value else None


def _first(data: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _count(data: dict, keys: tuple[str, ...]) -> int:
    value = _first(data, keys)
    if isinstance(value, list):
        return len(value)
    number = _number(value)
    return int(number) if number is not None and number >= 0 else 0


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if isinstance(value, (int, float)) and not (isinstance(value, float) and not math.isfinite(value)):
        return value
    return None


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _truncate(text: str) -> str:
    if len(text) <= RAW_BODY_LIMIT:
        return text
    return text[:RAW_BODY_LIMIT] + "..."


def _kind_for_status(status_code: int | None) -> ErrorKind:
    if status_code == 401:
        return ErrorKind.AUTHENTICATION
    if status_code == 403:
        return ErrorKind.PERMISSION
    if status_code in (408, 504):
        return ErrorKind.TIMEOUT
    return ErrorKind.UPSTREAM
