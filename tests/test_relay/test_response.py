"""Tests for relay response normalization."""

import json

import pytest

from flow_relay.exceptions import ErrorKind
from flow_relay.relay.response import RAW_BODY_LIMIT, ResponseProcessor
from flow_relay.relay.result import DEFAULT_ERROR_MESSAGE
from flow_relay.relay.transport import RawResponse

SUCCESS = {
    "status": "success",
    "message": "Processed 3 emails and saved 2 attachments",
    "version": "V.06-PRODUCTION-MODULAR",
    "processing_time": 4.2,
    "data": {
        "emailsFound": 3,
        "processedEmails": 3,
        "savedAttachments": 2,
        "processedAttachments": [{"savedName": "a.pdf"}, {"savedName": "b.pdf"}],
        "errors": [],
    },
}


def _raw(status_code, body):
    text = json.dumps(body) if not isinstance(body, str) else body
    parsed = body if not isinstance(body, str) else None
    return RawResponse(status_code=status_code, text=text, body=parsed)


def test_flat_success():
    result = ResponseProcessor().process(SUCCESS)
    assert result.success is True
    assert result.emails_found == 3
    assert result.processed_emails == 3
    assert result.saved_attachments == 2
    assert len(result.files) == 2
    assert result.version == "V.06-PRODUCTION-MODULAR"
    assert result.processing_time == 4.2


def test_nested_success_from_relay():
    body = {
        "success": True,
        "message": "Flow processed successfully",
        "request_id": "flow-f1-1",
        "apps_script_response": SUCCESS,
    }
    result = ResponseProcessor().process(_raw(200, body))
    assert result.success is True
    assert result.saved_attachments == 2
    assert result.request_id == "flow-f1-1"
    assert result.status_code == 200


def test_innermost_envelope_wins():
    body = {
        "status": "success",
        "data": {"emailsFound": 99},
        "apps_script_response": {"status": "error", "message": "Drive quota exceeded"},
    }
    result = ResponseProcessor().process(body)
    assert result.success is False
    assert result.error == "Drive quota exceeded"
    assert result.error_kind is ErrorKind.UPSTREAM


def test_envelope_under_debug_info():
    body = {"success": True, "debug_info": {"apps_script_response": SUCCESS}}
    assert ResponseProcessor().process(body).emails_found == 3


def test_legacy_count_aliases():
    body = {"status": "success", "data": {"attachments": 4, "processed": 5, "files": [{}]}}
    result = ResponseProcessor().process(body)
    assert result.saved_attachments == 4
    assert result.processed_emails == 5
    assert result.files == [{}]


def test_missing_counts_default_to_zero():
    result = ResponseProcessor().process({"status": "success"})
    assert result.success is True
    assert (result.emails_found, result.processed_emails, result.saved_attachments) == (0, 0, 0)
    assert result.files == []


@pytest.mark.parametrize("value", ["lots", None, -3, float("nan"), True])
def test_unusable_counts_default_to_zero(value):
    result = ResponseProcessor().process({"status": "success", "data": {"emailsFound": value}})
    assert result.emails_found == 0


def test_list_count_uses_length():
    body = {"status": "success", "data": {"savedAttachments": [{}, {}, {}]}}
    assert ResponseProcessor().process(body).saved_attachments == 3


def test_no_emails_found_is_success():
    body = {
        "status": "success",
        "message": "No emails found matching the search criteria",
        "data": {"emailsFound": 0, "processedEmails": 0, "savedAttachments": 0},
    }
    result = ResponseProcessor().process(body)
    assert result.success is True
    assert result.summary() == "No emails found matching the search criteria"


def test_error_without_message_gets_default():
    result = ResponseProcessor().process({"status": "error"})
    assert result.success is False
    assert result.error == DEFAULT_ERROR_MESSAGE


def test_relay_error_envelope_uses_http_status():
    body = {"error": "Remote job error (403)", "details": "<html>"}
    result = ResponseProcessor().process(_raw(502, body))
    assert result.error == "Remote job error (403): <html>"
    assert result.error_kind is ErrorKind.UPSTREAM
    assert result.status_code == 502

    timed_out = ResponseProcessor().process(_raw(504, {"error": "Remote job request timeout"}))
    assert timed_out.error_kind is ErrorKind.TIMEOUT


def test_non_json_body_is_unexpected_format():
    html = "<html>" + "x" * 2000 + "</html>"
    result = ResponseProcessor().process(_raw(502, html))
    assert result.success is False
    assert result.error_kind is ErrorKind.UNEXPECTED_FORMAT
    assert len(result.raw_body) <= RAW_BODY_LIMIT + 3
    assert "HTTP 502" in result.error


@pytest.mark.parametrize("raw", [None, 42, [1, 2], "", b"\xff\xfe", {"hello": "world"}])
def test_malformed_input_never_raises(raw):
    result = ResponseProcessor().process(raw)
    assert result.success is False
    assert result.error_kind is ErrorKind.UNEXPECTED_FORMAT


def test_processing_is_idempotent():
    processor = ResponseProcessor()
    raw = _raw(200, {"success": True, "apps_script_response": SUCCESS})
    assert processor.process(raw) == processor.process(raw)
