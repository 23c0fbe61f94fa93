"""Tests for the execution history log."""

from flow_relay.history import ExecutionHistory, ExecutionRecord


def _record(**overrides):
    values = dict(
        flow_id="f1",
        user_id="u1",
        flow_name="Invoices",
        started_at="2024-05-01T10:00:00+00:00",
        success=True,
        emails_found=3,
        files=[{"savedName": "a.pdf"}],
    )
    values.update(overrides)
    return ExecutionRecord(**values)


def test_record_and_read_back(tmp_path):
    history = ExecutionHistory(tmp_path / "history.db")
    assert history.record(_record()) is True
    assert history.record(_record(started_at="2024-05-02T10:00:00+00:00", success=False,
                                  error_message="boom", error_kind="upstream")) is True

    rows = history.recent("u1")
    assert [r.success for r in rows] == [False, True]
    assert rows[0].error_kind == "upstream"
    assert rows[1].files == [{"savedName": "a.pdf"}]
    history.close()


def test_recent_filters_by_user():
    history = ExecutionHistory()
    history.record(_record(user_id="someone-else"))
    assert history.recent("u1") == []


def test_write_failure_is_swallowed():
    history = ExecutionHistory()
    history.close()
    assert history.record(_record()) is False


def test_unserializable_files_are_swallowed():
    history = ExecutionHistory()
    assert history.record(_record(files=[{"data": object()}])) is False
