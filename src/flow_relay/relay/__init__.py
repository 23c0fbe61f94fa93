"""Relay submission, response normalization and the relay endpoint itself."""

from flow_relay.relay.client import RelayClient
from flow_relay.relay.executor import FlowExecutor
from flow_relay.relay.forwarder import RelayForwarder
from flow_relay.relay.response import ResponseProcessor
from flow_relay.relay.result import FlowExecutionResult
from flow_relay.relay.transport import (
    DirectHttpTransport,
    FunctionsTransport,
    RawResponse,
    Transport,
)

__all__ = [
    "RelayClient",
    "FlowExecutor",
    "RelayForwarder",
    "ResponseProcessor",
    "FlowExecutionResult",
    "Transport",
    "FunctionsTransport",
    "DirectHttpTransport",
    "RawResponse",
]
