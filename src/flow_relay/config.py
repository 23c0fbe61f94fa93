"""Immutable configuration values passed into each component at construction."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from flow_relay.exceptions import ConfigurationError

DEFAULT_FUNCTION_NAME = os.environ.get("FLOW_RELAY_FUNCTION", "apps-script-proxy")
RUNTIME_VERSION = "V.06-PRODUCTION-MODULAR"


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff policy: ``base * 2^(attempt-1) + jitter``, capped."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5

    def __post_init__(self):
        if self.max_retries < 1:
            raise ConfigurationError(
                f"max_retries must be at least 1, got {self.max_retries}"
            )

    def delay_for(self, attempt: int, jitter_fraction: float = 0.0) -> float:
        """Delay to wait after failed ``attempt`` (1-based).

        ``jitter_fraction`` is a value in [0, 1) scaled by ``jitter``; the
        exponential part alone is capped at ``max_delay``.
        """
        backoff = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return backoff + self.jitter * jitter_fraction


@dataclass(frozen=True)
class RelayConfig:
    """Where and how the UI side reaches the relay endpoint.

    Args:
        base_url: Relay gateway root, e.g. ``https://<project>.supabase.co``.
        api_key: Gateway API key sent as the ``apikey`` header.
        function_name: Relay function invoked by the primary transport.
        webhook_url: Progress callback URL handed to the remote job.
        timeout: Hard ceiling for one outer relay call, in seconds.
        use_fallback: Retry once over the direct HTTP transport after a
            transport-level failure.
    """

    base_url: str
    api_key: str
    function_name: str = DEFAULT_FUNCTION_NAME
    webhook_url: str | None = None
    timeout: float = 60.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    use_fallback: bool = True
    request_source: str = "flow-relay"

    @property
    def function_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/functions/v1/{self.function_name}"

    @classmethod
    def from_env(cls) -> "RelayConfig":
        base_url = os.environ.get("FLOW_RELAY_URL")
        api_key = os.environ.get("FLOW_RELAY_API_KEY")
        if not base_url or not api_key:
            raise ConfigurationError(
                "FLOW_RELAY_URL and FLOW_RELAY_API_KEY must be set in the environment."
            )
        return cls(
            base_url=base_url,
            api_key=api_key,
            webhook_url=os.environ.get("FLOW_RELAY_WEBHOOK_URL"),
        )


@dataclass(frozen=True)
class ForwarderConfig:
    """Relay-side settings for calling the remote job runtime."""

    script_url: str
    secret: str
    timeout: float = 90.0
    max_body_bytes: int = 1024 * 1024

    @classmethod
    def from_env(cls) -> "ForwarderConfig":
        script_url = os.environ.get("APPS_SCRIPT_URL")
        secret = os.environ.get("APPS_SCRIPT_SECRET")
        if not script_url:
            raise ConfigurationError("Configuration error: APPS_SCRIPT_URL not set")
        if not secret:
            raise ConfigurationError("Configuration error: APPS_SCRIPT_SECRET not set")
        return cls(script_url=script_url, secret=secret)


@dataclass(frozen=True)
class RateLimitConfig:
    mail_calls_per_minute: int = 250
    storage_calls_per_minute: int = 1000
    batch_size: int = 10
    delay_between_batches: float = 2.0
    window: float = 60.0
    max_waits: int = 10


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    monitoring_window: float = 300.0


@dataclass(frozen=True)
class WebhookConfig:
    timeout: float = 5.0
    attempts: int = 2
    retry_delay: float = 1.0


@dataclass(frozen=True)
class ProgressConfig:
    # How long state for a finished request stays readable after its terminal event.
    grace_period: float = 5.0
    # Requests with no subscribe or ingest activity for this long are dropped.
    idle_timeout: float = 900.0


@dataclass(frozen=True)
class RuntimeConfig:
    """Settings for the remote job runtime."""

    secret: str | None = None
    version: str = RUNTIME_VERSION
    recency_days: int = 7
    default_max_emails: int = 10
    retry: RetryConfig = field(default_factory=lambda: RetryConfig(jitter=0.0))
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        secret = os.environ.get("APPS_SCRIPT_SECRET")
        if not secret:
            raise ConfigurationError(
                "APPS_SCRIPT_SECRET not configured for the job runtime."
            )
        return cls(secret=secret)
