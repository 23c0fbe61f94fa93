"""Tests for the progress publish/subscribe channel."""

from flow_relay.config import ProgressConfig
from flow_relay.progress.channel import ProgressChannel
from flow_relay.progress.models import ProgressEvent, ProgressStatus


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def _event(request_id, status, **data):
    return ProgressEvent(request_id, status, data=data)


def test_unknown_request_is_dropped():
    channel = ProgressChannel()
    assert channel.ingest(_event("r-1", ProgressStatus.STARTED)) is False
    assert channel.get_progress("r-1") is None
    assert len(channel) == 0


def test_subscriber_receives_events():
    channel = ProgressChannel()
    received = []
    channel.subscribe("r-1", received.append)

    assert channel.ingest(_event("r-1", ProgressStatus.STARTED)) is True
    assert [e.status for e in received] == [ProgressStatus.STARTED]


def test_out_of_order_events_last_one_wins():
    channel = ProgressChannel()
    channel.subscribe("r-1")
    channel.ingest(_event("r-1", ProgressStatus.PROCESSING, percentage=80))
    channel.ingest(_event("r-1", ProgressStatus.STARTED))

    assert channel.get_progress("r-1").status is ProgressStatus.STARTED


def test_terminal_state_evicted_after_grace_period():
    clock = FakeClock()
    channel = ProgressChannel(ProgressConfig(grace_period=5.0), clock=clock)
    channel.subscribe("r-1")
    channel.ingest(_event("r-1", ProgressStatus.COMPLETED))

    clock.now = 4.9
    assert channel.get_progress("r-1").status is ProgressStatus.COMPLETED
    clock.now = 5.0
    assert channel.get_progress("r-1") is None
    assert not channel.is_subscribed("r-1")


def test_grace_period_starts_at_first_terminal_event():
    clock = FakeClock()
    channel = ProgressChannel(ProgressConfig(grace_period=5.0), clock=clock)
    channel.subscribe("r-1")
    channel.ingest(_event("r-1", ProgressStatus.ERROR))
    clock.now = 3.0
    channel.ingest(_event("r-1", ProgressStatus.COMPLETED))

    clock.now = 5.5
    assert channel.purge_expired() == 1
    assert len(channel) == 0


def test_unsubscribe_releases_state_and_is_idempotent():
    channel = ProgressChannel()
    unsubscribe = channel.subscribe("r-1")
    channel.ingest(_event("r-1", ProgressStatus.STARTED))

    unsubscribe()
    unsubscribe()
    assert not channel.is_subscribed("r-1")
    assert channel.ingest(_event("r-1", ProgressStatus.PROCESSING)) is False


def test_state_kept_while_other_subscribers_remain():
    channel = ProgressChannel()
    first = channel.subscribe("r-1")
    channel.subscribe("r-1")
    first()
    assert channel.is_subscribed("r-1")


def test_failing_callback_does_not_block_others():
    channel = ProgressChannel()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    channel.subscribe("r-1", broken)
    channel.subscribe("r-1", received.append)
    assert channel.ingest(_event("r-1", ProgressStatus.STARTED)) is True
    assert len(received) == 1


def test_processing_after_completed_is_latest():
    channel = ProgressChannel()
    received = []
    channel.subscribe("r-1", received.append)

    channel.ingest(_event("r-1", ProgressStatus.PROCESSING, percentage=50))
    channel.ingest(_event("r-1", ProgressStatus.COMPLETED))
    channel.ingest(_event("r-1", ProgressStatus.PROCESSING, percentage=80))

    latest = channel.get_progress("r-1")
    assert latest.status is ProgressStatus.PROCESSING
    assert latest.percentage == 80
    assert len(received) == 3


def test_subscription_without_terminal_event_is_evicted_when_idle():
    clock = FakeClock()
    channel = ProgressChannel(ProgressConfig(idle_timeout=600.0), clock=clock)
    for i in range(1000):
        channel.subscribe(f"r-{i}")
        channel.ingest(_event(f"r-{i}", ProgressStatus.PROCESSING, percentage=10))

    clock.now = 599.0
    assert channel.purge_expired() == 0
    clock.now = 1e6
    assert channel.purge_expired() == 1000
    assert len(channel) == 0


def test_ingest_keeps_active_subscription_alive():
    clock = FakeClock()
    channel = ProgressChannel(ProgressConfig(idle_timeout=600.0), clock=clock)
    channel.subscribe("r-1")
    clock.now = 500.0
    channel.ingest(_event("r-1", ProgressStatus.PROCESSING))
    clock.now = 1000.0
    assert channel.is_subscribed("r-1")
    clock.now = 1100.0
    assert not channel.is_subscribed("r-1")
