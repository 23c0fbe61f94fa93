"""Tests for the attachment-processing job."""

import pytest

from flow_relay.config import CircuitBreakerConfig, RateLimitConfig, RuntimeConfig
from flow_relay.runtime.base import (
    MailAttachment,
    Mailbox,
    MailMessage,
    MailThread,
    Storage,
    StoredFile,
)
from flow_relay.runtime.circuit_breaker import CircuitBreaker
from flow_relay.runtime.job import NO_EMAILS_MESSAGE, FlowJob, matches_file_types


class FakeMailbox(Mailbox):
    def __init__(self, threads, fail_threads=()):
        self.threads = threads
        self.fail_threads = set(fail_threads)
        self.queries = []

    def search(self, query, max_results):
        self.queries.append((query, max_results))
        return [MailThread(thread_id) for thread_id in self.threads][:max_results]

    def get_messages(self, thread):
        if thread.thread_id in self.fail_threads:
            raise ValueError("malformed thread")
        attachments = self.threads[thread.thread_id]
        return [MailMessage(f"m-{thread.thread_id}", thread.thread_id, attachments=attachments)]

    def get_attachment_data(self, message, attachment):
        return b"%PDF-1.4"


class FakeStorage(Storage):
    def __init__(self):
        self.folders = []
        self.saved = []

    def get_or_create_folder(self, path):
        self.folders.append(path)
        return "folder-1"

    def save_file(self, folder_id, name, mime_type, data):
        self.saved.append((folder_id, name, mime_type, data))
        return StoredFile(f"file-{len(self.saved)}", f"https://drive/file-{len(self.saved)}")


class FakeWebhook:
    def __init__(self):
        self.events = []

    def send(self, url, event):
        self.events.append(event)
        return True


def _pdf(name="invoice.pdf"):
    return MailAttachment(f"att-{name}", name, "application/pdf", size=8)


def _png(name="logo.png"):
    return MailAttachment(f"att-{name}", name, "image/png", size=4)


USER_CONFIG = {
    "flowName": "Invoices",
    "driveFolder": "Finance/Invoices",
    "fileTypes": ["pdf"],
    "senders": "billing@vendor.com",
    "maxEmails": 10,
}


def _job(mailbox, storage, batch_size=10, webhook=None, sleeps=None, **breakers):
    config = RuntimeConfig(
        secret="s3cret",
        rate_limit=RateLimitConfig(batch_size=batch_size, delay_between_batches=2.0),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=3),
    )
    sleep = sleeps.append if sleeps is not None else (lambda s: None)
    return FlowJob(mailbox, storage, config=config, webhook=webhook, sleep=sleep, **breakers)


@pytest.mark.parametrize(
    "filename, mime, allowed, expected",
    [
        ("a.pdf", "application/octet-stream", ["pdf"], True),
        ("scan", "application/pdf", ["pdf"], True),
        ("a.png", "image/png", ["pdf"], False),
        ("a.png", "image/png", ["images"], True),
        ("notes.txt", "application/octet-stream", ["documents"], True),
        ("report", "application/vnd.openxmlformats-officedocument.wordprocessingml.document", ["documents"], True),
        ("a.zip", "application/zip", ["pdf", "images"], False),
        ("a.zip", "application/zip", [], True),
        ("a.zip", "application/zip", ["archives"], True),
    ],
)
def test_matches_file_types(filename, mime, allowed, expected):
    assert matches_file_types(filename, mime, allowed) is expected


def test_run_saves_matching_attachments():
    mailbox = FakeMailbox({"t1": [_pdf(), _png()], "t2": [_pdf("receipt.pdf")]})
    storage = FakeStorage()
    webhook = FakeWebhook()

    response = _job(mailbox, storage, webhook=webhook).run(
        USER_CONFIG, user_email="me@example.com", request_id="flow-f1-1",
        webhook_url="https://relay/webhook",
    )

    assert response["status"] == "success"
    data = response["data"]
    assert data["emailsFound"] == 2
    assert data["processedEmails"] == 2
    assert data["savedAttachments"] == 2
    assert data["errors"] == []
    assert storage.folders == ["Finance/Invoices"]
    first = data["processedAttachments"][0]
    assert first["originalName"] == "invoice.pdf"
    assert first["savedName"].startswith("Invoices_")
    assert first["savedName"].endswith("_invoice.pdf")
    assert ":" not in first["savedName"]
    assert first["fileUrl"] == "https://drive/file-1"
    statuses = [e.status.value for e in webhook.events]
    assert statuses[0] == "started"
    assert statuses[-1] == "completed"
    assert "processing" in statuses


def test_run_builds_query_when_missing():
    mailbox = FakeMailbox({})
    config = {k: v for k, v in USER_CONFIG.items() if k != "maxEmails"}
    _job(mailbox, FakeStorage()).run(config, user_email="me@example.com")
    query, max_results = mailbox.queries[0]
    assert query == "(from:billing@vendor.com has:attachment newer_than:7d)"
    assert max_results == 10


def test_run_uses_supplied_search_query():
    mailbox = FakeMailbox({})
    _job(mailbox, FakeStorage()).run(dict(USER_CONFIG, searchQuery="label:inbox"))
    assert mailbox.queries[0][0] == "label:inbox"


def test_no_emails_found_is_success():
    response = _job(FakeMailbox({}), FakeStorage()).run(USER_CONFIG)
    assert response["status"] == "success"
    assert response["message"] == NO_EMAILS_MESSAGE
    assert response["data"]["emailsFound"] == 0
    assert response["data"]["savedAttachments"] == 0


def test_batches_pause_between_them():
    mailbox = FakeMailbox({f"t{i}": [_pdf(f"{i}.pdf")] for i in range(5)})
    sleeps = []
    response = _job(mailbox, FakeStorage(), batch_size=2, sleeps=sleeps).run(USER_CONFIG)
    assert response["data"]["savedAttachments"] == 5
    assert sleeps == [2.0, 2.0]


def test_thread_errors_are_collected():
    mailbox = FakeMailbox({"t1": [_pdf()], "t2": [_pdf("b.pdf")]}, fail_threads={"t1"})
    response = _job(mailbox, FakeStorage()).run(USER_CONFIG)

    assert response["status"] == "success"
    data = response["data"]
    assert data["savedAttachments"] == 1
    assert data["processedEmails"] == 1
    assert any("t1" in error for error in data["errors"])


def test_open_storage_breaker_returns_partial_result():
    mailbox = FakeMailbox({"t1": [_pdf()], "t2": [_pdf("b.pdf")], "t3": [_pdf("c.pdf")]})
    storage = FakeStorage()
    storage_breaker = CircuitBreaker("storage")
    storage_breaker.trip()

    response = _job(mailbox, storage, storage_breaker=storage_breaker).run(USER_CONFIG)

    assert response["status"] == "success"
    data = response["data"]
    assert data["processedEmails"] == data["emailsFound"] == 3
    assert data["savedAttachments"] == 0
    assert len(data["errors"]) == 1
    assert "unavailable" in data["errors"][0]
    assert storage.folders == []


def test_open_mail_breaker_fails_search():
    mail_breaker = CircuitBreaker("mail")
    mail_breaker.trip()
    webhook = FakeWebhook()

    response = _job(FakeMailbox({"t1": []}), FakeStorage(), webhook=webhook, mail_breaker=mail_breaker).run(
        USER_CONFIG, request_id="flow-f1-1", webhook_url="https://relay/webhook"
    )

    assert response["status"] == "error"
    assert "unavailable" in response["message"]
    assert webhook.events[-1].status.value == "error"


def test_search_failure_returns_error_response():
    class BrokenMailbox(FakeMailbox):
        def search(self, query, max_results):
            raise ValueError("Invalid query")

    response = _job(BrokenMailbox({}), FakeStorage()).run(USER_CONFIG)
    assert response["status"] == "error"
    assert "Invalid query" in response["message"]


def test_webhook_failures_do_not_abort_job():
    class ExplodingWebhook:
        def send(self, url, event):
            raise RuntimeError("webhook down")

    mailbox = FakeMailbox({"t1": [_pdf()]})
    response = _job(mailbox, FakeStorage(), webhook=ExplodingWebhook()).run(
        USER_CONFIG, request_id="flow-f1-1", webhook_url="https://relay/webhook"
    )
    assert response["data"]["savedAttachments"] == 1
