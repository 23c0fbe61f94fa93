"""Remote job runtime: request handling, batching, retry, rate limits, breakers.

The Google adapters require google-api-python-client. Use explicit imports:
    from flow_relay.runtime.google import GmailMailbox, DriveStorage
"""

from flow_relay.runtime.base import (
    MailAttachment,
    Mailbox,
    MailMessage,
    MailThread,
    Storage,
    StoredFile,
)
from flow_relay.runtime.circuit_breaker import CircuitBreaker, CircuitState
from flow_relay.runtime.handler import JobHandler
from flow_relay.runtime.job import FlowJob, matches_file_types
from flow_relay.runtime.rate_limiter import RateLimiter
from flow_relay.runtime.retry import RetryHandler, is_retryable


def __getattr__(name):
    """Lazy imports for the Google API adapters."""
    if name == "GmailMailbox":
        from flow_relay.runtime.google import GmailMailbox
        return GmailMailbox
    if name == "DriveStorage":
        from flow_relay.runtime.google import DriveStorage
        return DriveStorage
    raise AttributeError(f"module 'flow_relay.runtime' has no attribute {name!r}")


__all__ = [
    "MailAttachment",
    "Mailbox",
    "MailMessage",
    "MailThread",
    "Storage",
    "StoredFile",
    "CircuitBreaker",
    "CircuitState",
    "JobHandler",
    "FlowJob",
    "matches_file_types",
    "RateLimiter",
    "RetryHandler",
    "is_retryable",
    "GmailMailbox",
    "DriveStorage",
]
