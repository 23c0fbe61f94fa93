"""Single-flight token refresh per user."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from flow_relay.auth.credentials import (
    DEFAULT_REFRESH_SKEW,
    Credentials,
    CredentialStore,
)
from flow_relay.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

Refresher = Callable[[Credentials], Awaitable[Credentials]]


class TokenManager:
    """Hands out valid access tokens and serializes refreshes per user.

    Only one refresh runs at a time for a user. A caller that waited behind
    another refresh and finds the token already replaced gets the fresh
    bundle instead of refreshing again, so two racing callers never produce
    divergent bundles.

    Args:
        store: Where bundles live. Write failures are logged and swallowed;
            the refreshed bundle is still served from memory.
        refresher: Coroutine exchanging a bundle for a refreshed one.
        provider: Provider key used for store lookups.
        skew: Refresh when expiry is closer than this.
    """

    def __init__(
        self,
        store: CredentialStore,
        refresher: Refresher,
        provider: str = "google",
        skew: timedelta = DEFAULT_REFRESH_SKEW,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.provider = provider
        self.skew = skew
        self._refresher = refresher
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._latest: dict[str, Credentials] = {}

    def current(self, user_id: str) -> Credentials | None:
        cached = self._latest.get(user_id)
        if cached is not None:
            return cached
        return self.store.get(user_id, self.provider)

    async def get_access_token(self, user_id: str) -> str:
        creds = self.current(user_id)
        if creds is None:
            raise AuthenticationError(
                f"No credentials for user '{user_id}'. Sign in first."
            )
        now = self._clock()
        if not creds.expires_soon(self.skew, now=now):
            return creds.access_token

        still_valid = creds.expires_at is not None and creds.expires_at > now
        if still_valid and not creds.refresh_token:
            logger.debug(f"Access token for {user_id} expires soon and cannot be refreshed")
            return creds.access_token

        logger.info(f"Access token for {user_id} expires soon, refreshing")
        try:
            creds = await self.refresh(user_id, stale_token=creds.access_token)
        except AuthenticationError as e:
            if not still_valid:
                raise
            logger.warning(f"Early refresh for {user_id} failed, using current token: {e}")
        return creds.access_token

    async def refresh(self, user_id: str, stale_token: str | None = None) -> Credentials:
        """Refresh the user's bundle unless someone already replaced ``stale_token``."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            current = self.current(user_id)
            if current is None:
                raise AuthenticationError(
                    f"No credentials for user '{user_id}'. Sign in first."
                )
            if stale_token is not None and current.access_token != stale_token:
                logger.debug(f"Token for {user_id} already refreshed by another caller")
                return current
            if not current.refresh_token:
                raise AuthenticationError(
                    f"Credentials for '{user_id}' cannot be refreshed. Please re-authenticate."
                )

            try:
                refreshed = await self._refresher(current)
            except AuthenticationError:
                raise
            except Exception as e:
                raise AuthenticationError(f"Token refresh failed: {e}") from e

            self._latest[user_id] = refreshed
            self._persist(refreshed)
            logger.info(f"Refreshed credentials for {user_id}")
            return refreshed

    def save(self, credentials: Credentials) -> None:
        """Install a bundle obtained at sign-in."""
        self._latest[credentials.user_id] = credentials
        self._persist(credentials)

    def sign_out(self, user_id: str) -> None:
        self._latest.pop(user_id, None)
        try:
            self.store.delete(user_id, self.provider)
        except Exception as e:
            logger.warning(f"Failed to delete credentials for {user_id}: {e}")

    def _persist(self, credentials: Credentials) -> None:
        try:
            self.store.put(credentials)
        except Exception as e:
            logger.warning(f"Failed to persist credentials for {credentials.user_id}: {e}")
