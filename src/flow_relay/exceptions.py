"""Unified exception hierarchy for flow-relay.

Every error carries a ``kind`` tag and an optional HTTP ``status``, populated
where the error is first observed, so callers classify by field instead of by
searching messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    NETWORK = "network"
    TIMEOUT = "timeout"
    UPSTREAM = "upstream"
    UNEXPECTED_FORMAT = "unexpected_format"
    CONFIGURATION = "configuration"


class FlowRelayError(Exception):
    """Base exception for all flow-relay errors."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str = "", status: int | None = None):
        super().__init__(message)
        self.status = status


class ConfigurationError(FlowRelayError):
    """Required configuration value is missing or invalid."""

    kind = ErrorKind.CONFIGURATION


# Request building
class ValidationError(FlowRelayError):
    """Flow configuration is missing a required field."""

    kind = ErrorKind.VALIDATION


# Auth
class AuthenticationError(FlowRelayError):
    """Bearer or delegated token is missing, expired or rejected (HTTP 401)."""

    kind = ErrorKind.AUTHENTICATION


class PermissionDeniedError(FlowRelayError):
    """Caller lacks access to the requested resource (HTTP 403)."""

    kind = ErrorKind.PERMISSION


# Transport
class NetworkError(FlowRelayError):
    """Transport-level failure: connection refused, reset, DNS, TLS."""

    kind = ErrorKind.NETWORK


class RelayTimeoutError(NetworkError):
    """Deadline exceeded while waiting on the relay or the remote job."""

    kind = ErrorKind.TIMEOUT


# Application
class UpstreamError(FlowRelayError):
    """Remote job reported ``status: error``."""

    kind = ErrorKind.UPSTREAM


class UnexpectedFormatError(FlowRelayError):
    """Response body could not be understood."""

    kind = ErrorKind.UNEXPECTED_FORMAT


# Runtime
class RuntimeJobError(FlowRelayError):
    """Base exception for remote job runtime operations."""


class RetryableError(RuntimeJobError):
    """Transient upstream failure worth retrying (quota, 5xx, timeout)."""


class CircuitOpenError(RuntimeJobError):
    """Call short-circuited because the dependency's breaker is open."""


class RateLimitExceededError(RetryableError):
    """Rate limiter could not obtain a slot within its bounded wait count."""
