"""google-auth backed refresher for Google provider bundles."""

from __future__ import annotations

import asyncio
from datetime import timezone

from flow_relay.auth.credentials import Credentials
from flow_relay.exceptions import AuthenticationError

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class GoogleTokenRefresher:
    """Refreshes a bundle whose access token is a Google OAuth2 token.

    Args:
        client_id: OAuth client ID the refresh token was issued to.
        client_secret: Matching client secret.
        scopes: Scopes requested on refresh.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        scopes: list[str] | None = None,
        token_uri: str = GOOGLE_TOKEN_URI,
    ):
        try:
            from google.auth.transport.requests import Request  # noqa: F401
            from google.oauth2.credentials import Credentials as GoogleCredentials  # noqa: F401
        except ImportError:
            raise ImportError(
                "google-auth is required for GoogleTokenRefresher. "
                "Install with: pip install flow-relay[google]"
            )
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes
        self.token_uri = token_uri

    async def __call__(self, credentials: Credentials) -> Credentials:
        return await asyncio.to_thread(self._refresh, credentials)

    def to_google(self, credentials: Credentials):
        """Build ``google.oauth2.credentials.Credentials`` from a bundle."""
        from google.oauth2.credentials import Credentials as GoogleCredentials

        return GoogleCredentials(
            token=credentials.provider_token or credentials.access_token,
            refresh_token=credentials.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.scopes,
        )

    def _refresh(self, credentials: Credentials) -> Credentials:
        from google.auth.exceptions import RefreshError
        from google.auth.transport.requests import Request

        gcreds = self.to_google(credentials)
        try:
            gcreds.refresh(Request())
        except RefreshError as e:
            raise AuthenticationError(
                f"Google rejected the refresh token: {e}", status=401
            ) from e

        expires_at = gcreds.expiry
        if expires_at is not None and expires_at.tzinfo is None:
            # google-auth reports naive UTC
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return credentials.with_tokens(
            access_token=gcreds.token,
            expires_at=expires_at,
            provider_token=gcreds.token,
            refresh_token=gcreds.refresh_token or credentials.refresh_token,
        )
