"""Gmail and Google Drive adapters over google-api-python-client services.

Pass an authorized ``Resource`` (``build("gmail", "v1", ...)`` /
``build("drive", "v3", ...)``) or use the ``from_credentials`` helpers.
"""

from __future__ import annotations

import base64
import io
import logging

from flow_relay.runtime.base import (
    MailAttachment,
    Mailbox,
    MailMessage,
    MailThread,
    Storage,
    StoredFile,
)

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


class GmailMailbox(Mailbox):
    """Gmail v1 API mailbox for the authorized user."""

    def __init__(self, service, user_id: str = "me"):
        self._service = service
        self.user_id = user_id

    @classmethod
    def from_credentials(cls, credentials) -> "GmailMailbox":
        try:
            from googleapiclient.discovery import build
        except ImportError:
            raise ImportError(
                "google-api-python-client is required for GmailMailbox. "
                "Install with: pip install flow-relay[google]"
            )
        return cls(build("gmail", "v1", credentials=credentials, cache_discovery=False))

    def search(self, query: str, max_results: int) -> list[MailThread]:
        threads: list[MailThread] = []
        page_token = None

        while len(threads) < max_results:
            kwargs: dict = {
                "userId": self.user_id,
                "q": query,
                "maxResults": min(max_results - len(threads), 100),
            }
            if page_token:
                kwargs["pageToken"] = page_token

            response = self._service.users().threads().list(**kwargs).execute()
            items = response.get("threads", [])
            if not items:
                break

            threads.extend(
                MailThread(thread_id=item["id"], snippet=item.get("snippet", ""))
                for item in items
            )
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.info(f"Gmail search '{query}' matched {len(threads)} threads")
        return threads[:max_results]

    def get_messages(self, thread: MailThread) -> list[MailMessage]:
        data = (
            self._service.users()
            .threads()
            .get(userId=self.user_id, id=thread.thread_id, format="full")
            .execute()
        )
        return [self._parse_message(msg, thread.thread_id) for msg in data.get("messages", [])]

    def get_attachment_data(self, message: MailMessage, attachment: MailAttachment) -> bytes:
        response = (
            self._service.users()
            .messages()
            .attachments()
            .get(userId=self.user_id, messageId=message.message_id, id=attachment.attachment_id)
            .execute()
        )
        return base64.urlsafe_b64decode(response.get("data", ""))

    def _parse_message(self, raw: dict, thread_id: str) -> MailMessage:
        payload = raw.get("payload", {})
        headers = {h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers", [])}
        attachments = [
            MailAttachment(
                attachment_id=part["body"]["attachmentId"],
                filename=part["filename"],
                mime_type=part.get("mimeType", "application/octet-stream"),
                size=int(part["body"].get("size", 0)),
            )
            for part in _walk_parts(payload)
            if part.get("filename") and part.get("body", {}).get("attachmentId")
        ]
        return MailMessage(
            message_id=raw["id"],
            thread_id=raw.get("threadId", thread_id),
            sender=headers.get("from", ""),
            subject=headers.get("subject", ""),
            attachments=attachments,
        )


def _walk_parts(part: dict):
    yield part
    for child in part.get("parts", []) or []:
        yield from _walk_parts(child)


class DriveStorage(Storage):
    """Drive v3 API storage rooted at the user's My Drive."""

    def __init__(self, service):
        self._service = service
        self._folders: dict[str, str] = {}

    @classmethod
    def from_credentials(cls, credentials) -> "DriveStorage":
        try:
            from googleapiclient.discovery import build
        except ImportError:
            raise ImportError(
                "google-api-python-client is required for DriveStorage. "
                "Install with: pip install flow-relay[google]"
            )
        return cls(build("drive", "v3", credentials=credentials, cache_discovery=False))

    def get_or_create_folder(self, path: str) -> str:
        parts = [p.strip() for p in path.split("/") if p.strip()]
        key = "/".join(parts)
        if key in self._folders:
            return self._folders[key]

        parent = "root"
        for name in parts:
            escaped = name.replace("\\", "\\\\").replace("'", "\\'")
            response = (
                self._service.files()
                .list(
                    q=(
                        f"name = '{escaped}' and mimeType = '{FOLDER_MIME_TYPE}' "
                        f"and '{parent}' in parents and trashed = false"
                    ),
                    fields="files(id, name)",
                    pageSize=1,
                )
                .execute()
            )
            found = response.get("files", [])
            if found:
                parent = found[0]["id"]
            else:
                created = (
                    self._service.files()
                    .create(
                        body={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent]},
                        fields="id",
                    )
                    .execute()
                )
                parent = created["id"]
                logger.info(f"Created Drive folder '{name}' ({parent})")

        self._folders[key] = parent
        return parent

    def save_file(self, folder_id: str, name: str, mime_type: str, data: bytes) -> StoredFile:
        try:
            from googleapiclient.http import MediaIoBaseUpload
        except ImportError:
            raise ImportError(
                "google-api-python-client is required for DriveStorage. "
                "Install with: pip install flow-relay[google]"
            )

        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        created = (
            self._service.files()
            .create(
                body={"name": name, "parents": [folder_id]},
                media_body=media,
                fields="id, webViewLink",
            )
            .execute()
        )
        return StoredFile(file_id=created["id"], url=created.get("webViewLink"))
