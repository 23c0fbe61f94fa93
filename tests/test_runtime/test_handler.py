"""Tests for the runtime request handler."""

import json

from flow_relay.config import RuntimeConfig
from flow_relay.runtime.base import MailAttachment, Mailbox, MailMessage, MailThread, Storage, StoredFile
from flow_relay.runtime.handler import JobHandler
from flow_relay.runtime.responses import HEALTH_FEATURES


class OneThreadMailbox(Mailbox):
    def search(self, query, max_results):
        return [MailThread("t1")]

    def get_messages(self, thread):
        attachment = MailAttachment("a1", "invoice.pdf", "application/pdf", 8)
        return [MailMessage("m1", "t1", attachments=[attachment])]

    def get_attachment_data(self, message, attachment):
        return b"%PDF-1.4"


class MemoryStorage(Storage):
    def get_or_create_folder(self, path):
        return "folder-1"

    def save_file(self, folder_id, name, mime_type, data):
        return StoredFile("file-1", "https://drive/file-1")


class NullWebhook:
    def send(self, url, event):
        return True


def _handler(secret="s3cret"):
    return JobHandler(
        RuntimeConfig(secret=secret),
        OneThreadMailbox(),
        MemoryStorage(),
        webhook=NullWebhook(),
        sleep=lambda s: None,
    )


def _body(action="process_gmail_flow", secret="s3cret", **user_config):
    config = {"flowName": "Invoices", "driveFolder": "/Inv", "fileTypes": ["pdf"]}
    config.update(user_config)
    return {
        "secret": secret,
        "payload": {
            "action": action,
            "userEmail": "me@example.com",
            "userConfig": config,
            "debug_info": {"request_id": "flow-f1-1"},
        },
    }


def test_health_check():
    response = _handler().handle(_body(action="health_check"))
    assert response["status"] == "success"
    assert response["version"] == "V.06-PRODUCTION-MODULAR"
    assert response["features"] == HEALTH_FEATURES


def test_process_flow():
    response = _handler().handle(json.dumps(_body()))
    assert response["status"] == "success"
    assert response["data"]["savedAttachments"] == 1
    assert response["data"]["userEmail"] == "me@example.com"


def test_wrong_secret_rejected():
    response = _handler().handle(_body(secret="guess"))
    assert response["status"] == "error"
    assert response["message"] == "Invalid authentication"


def test_missing_secret_rejected():
    body = _body()
    del body["secret"]
    assert _handler().handle(body)["status"] == "error"


def test_unconfigured_secret_rejects_everything():
    response = _handler(secret=None).handle(_body())
    assert response["status"] == "error"
    assert "not configured" in response["message"]


def test_missing_required_fields():
    response = _handler().handle(_body(driveFolder="", flowName=""))
    assert response["status"] == "error"
    assert "driveFolder" in response["message"]
    assert "flowName" in response["message"]


def test_unknown_action():
    response = _handler().handle(_body(action="delete_everything"))
    assert response["status"] == "error"
    assert "Unknown action" in response["message"]


def test_invalid_json():
    assert _handler().handle("{oops")["status"] == "error"
    assert _handler().handle(b"[1, 2]")["status"] == "error"


def test_breakers_shared_across_requests():
    handler = _handler()
    handler.storage_breaker.trip()
    response = handler.handle(_body())
    assert response["data"]["savedAttachments"] == 0
    assert "unavailable" in response["data"]["errors"][0]
