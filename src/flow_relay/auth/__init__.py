"""Credential bundles and token refresh.

``GoogleTokenRefresher`` pulls in google-auth; import it explicitly:
    from flow_relay.auth.google import GoogleTokenRefresher
"""

from flow_relay.auth.credentials import (
    Credentials,
    CredentialStore,
    InMemoryCredentialStore,
)
from flow_relay.auth.tokens import TokenManager


def __getattr__(name):
    """Lazy import for the google-auth backed refresher."""
    if name == "GoogleTokenRefresher":
        from flow_relay.auth.google import GoogleTokenRefresher
        return GoogleTokenRefresher
    raise AttributeError(f"module 'flow_relay.auth' has no attribute {name!r}")


__all__ = [
    "Credentials",
    "CredentialStore",
    "InMemoryCredentialStore",
    "TokenManager",
    "GoogleTokenRefresher",
]
