"""Time-bounded credential bundles and their store."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SKEW = timedelta(minutes=5)


@dataclass(frozen=True)
class Credentials:
    """OAuth-style token bundle for one ``(user_id, provider)``.

    ``provider_token`` is the delegated third-party (Google) token.
    """

    user_id: str
    access_token: str
    provider: str = "google"
    refresh_token: str | None = None
    provider_token: str | None = None
    expires_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.provider)

    def expires_soon(
        self,
        skew: timedelta = DEFAULT_REFRESH_SKEW,
        now: datetime | None = None,
    ) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at - now <= skew

    def with_tokens(self, access_token: str, expires_at: datetime | None, **changes) -> "Credentials":
        return replace(self, access_token=access_token, expires_at=expires_at, **changes)

    def to_record(self) -> dict:
        return {
            "user_id": self.user_id,
            "provider": self.provider,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "provider_token": self.provider_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"Credentials(user_id={self.user_id!r}, provider={self.provider!r}, "
            f"expires_at={self.expires_at!r})"
        )


class CredentialStore(ABC):
    """At most one active bundle per ``(user_id, provider)``."""

    @abstractmethod
    def get(self, user_id: str, provider: str = "google") -> Credentials | None:
        ...

    @abstractmethod
    def put(self, credentials: Credentials) -> None:
        """Atomically replace the bundle for ``credentials.key``."""
        ...

    @abstractmethod
    def delete(self, user_id: str, provider: str = "google") -> bool:
        ...


class InMemoryCredentialStore(CredentialStore):
    def __init__(self):
        self._items: dict[tuple[str, str], Credentials] = {}
        self._lock = threading.Lock()

    def get(self, user_id, provider="google"):
        with self._lock:
            return self._items.get((user_id, provider))

    def put(self, credentials):
        with self._lock:
            self._items[credentials.key] = credentials

    def delete(self, user_id, provider="google"):
        with self._lock:
            return self._items.pop((user_id, provider), None) is not None

    def __len__(self) -> int:
        return len(self._items)
