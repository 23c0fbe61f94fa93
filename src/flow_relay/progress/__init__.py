"""Job progress notifications: pub/sub channel and webhook plumbing."""

from flow_relay.progress.channel import ProgressChannel
from flow_relay.progress.models import ProgressEvent, ProgressStatus
from flow_relay.progress.webhook import WebhookReceiver, WebhookSender

__all__ = [
    "ProgressChannel",
    "ProgressEvent",
    "ProgressStatus",
    "WebhookReceiver",
    "WebhookSender",
]
