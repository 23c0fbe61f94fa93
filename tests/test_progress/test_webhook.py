"""Tests for webhook delivery and ingestion."""

import json

import httpx

from flow_relay.config import WebhookConfig
from flow_relay.progress.channel import ProgressChannel
from flow_relay.progress.models import ProgressEvent, ProgressStatus
from flow_relay.progress.webhook import WebhookReceiver, WebhookSender


def _sender(handler, sleeps=None):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    sleep = sleeps.append if sleeps is not None else (lambda _: None)
    return WebhookSender(WebhookConfig(attempts=2, retry_delay=1.0), client=client, sleep=sleep)


def test_send_posts_status_update():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"received": True})

    event = ProgressEvent.processing("r-1", 2, 4, "halfway")
    assert _sender(handler).send("https://relay/webhook", event) is True

    request = seen[0]
    assert request.headers["X-Request-ID"] == "r-1"
    body = json.loads(request.content)
    assert body["type"] == "status_update"
    assert body["status"] == "processing"
    assert body["data"]["percentage"] == 50


def test_send_retries_once_then_gives_up():
    calls = []
    sleeps = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    event = ProgressEvent("r-1", ProgressStatus.STARTED)
    assert _sender(handler, sleeps).send("https://relay/webhook", event) is False
    assert len(calls) == 2
    assert sleeps == [1.0]


def test_send_swallows_transport_errors():
    def handler(request):
        raise httpx.ConnectError("refused")

    event = ProgressEvent("r-1", ProgressStatus.ERROR)
    assert _sender(handler).send("https://relay/webhook", event) is False


def test_send_without_url_is_noop():
    assert WebhookSender().send(None, ProgressEvent("r-1", ProgressStatus.STARTED)) is False


def test_receiver_ingests_for_subscriber():
    channel = ProgressChannel()
    channel.subscribe("r-1")
    receiver = WebhookReceiver(channel)

    status, body = receiver.handle(
        {"type": "status_update", "status": "completed", "requestId": "r-1", "message": "done"},
        headers={"x-request-id": "r-1"},
    )
    assert status == 200
    assert body["processed"] is True
    assert body["status"] == "completed"
    assert channel.get_progress("r-1").message == "done"


def test_receiver_unknown_request_is_acknowledged():
    status, body = WebhookReceiver(ProgressChannel()).handle(
        {"type": "status_update", "status": "started", "requestId": "r-9"}
    )
    assert status == 200
    assert body["processed"] is False


def test_receiver_rejects_non_post():
    status, _ = WebhookReceiver(ProgressChannel()).handle({}, method="GET")
    assert status == 405


def test_receiver_rejects_missing_fields():
    status, body = WebhookReceiver(ProgressChannel()).handle({"type": "status_update"})
    assert status == 400
    assert "requestId" in body["required"]


def test_receiver_rejects_unknown_status():
    status, _ = WebhookReceiver(ProgressChannel()).handle(
        {"type": "status_update", "status": "paused", "requestId": "r-1"}
    )
    assert status == 400


def test_receiver_ignores_unknown_type():
    status, body = WebhookReceiver(ProgressChannel()).handle(
        {"type": "ping", "status": "started", "requestId": "r-1"}
    )
    assert status == 200
    assert body["processed"] is False


def test_event_sent_at_parses_timestamp():
    event = ProgressEvent("r-1", ProgressStatus.STARTED, timestamp="2024-05-01T10:00:00+00:00")
    assert event.sent_at.year == 2024
    assert ProgressEvent("r-1", ProgressStatus.STARTED, timestamp="soon").sent_at is None
