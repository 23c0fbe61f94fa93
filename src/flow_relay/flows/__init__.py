"""Flow definitions and job payload construction."""

from flow_relay.flows import query
from flow_relay.flows.models import FILE_TYPE_CATEGORIES, FlowConfig
from flow_relay.flows.payload import (
    HEALTH_CHECK_ACTION,
    PROCESS_ACTION,
    PayloadBuilder,
    make_request_id,
)

__all__ = [
    "FILE_TYPE_CATEGORIES",
    "FlowConfig",
    "PayloadBuilder",
    "PROCESS_ACTION",
    "HEALTH_CHECK_ACTION",
    "make_request_id",
    "query",
]
