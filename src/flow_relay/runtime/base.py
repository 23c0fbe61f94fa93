"""Abstract mail and storage interfaces used by the job runtime."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class MailAttachment:
    attachment_id: str
    filename: str
    mime_type: str
    size: int = 0


@dataclass
class MailMessage:
    message_id: str
    thread_id: str
    sender: str = ""
    subject: str = ""
    attachments: list[MailAttachment] = field(default_factory=list)


@dataclass
class MailThread:
    thread_id: str
    snippet: str = ""


@dataclass
class StoredFile:
    file_id: str
    url: str | None = None


class Mailbox(ABC):
    """Read access to the user's mail."""

    @abstractmethod
    def search(self, query: str, max_results: int) -> list[MailThread]:
        """Threads matching a Gmail search query, newest first."""
        ...

    @abstractmethod
    def get_messages(self, thread: MailThread) -> list[MailMessage]:
        ...

    @abstractmethod
    def get_attachment_data(self, message: MailMessage, attachment: MailAttachment) -> bytes:
        ...


class Storage(ABC):
    """Write access to the user's file storage."""

    @abstractmethod
    def get_or_create_folder(self, path: str) -> str:
        """Resolve a slash-delimited path to a folder ID, creating missing parts."""
        ...

    @abstractmethod
    def save_file(self, folder_id: str, name: str, mime_type: str, data: bytes) -> StoredFile:
        ...
