"""Tests for activity events, sinks and the in-memory journal."""

import logging

from flowengine.runtime import (
    ActivityAction,
    ActivityEvent,
    ActivityJournal,
    ActivityLogger,
    LoggingActivityLogger,
    NullActivityLogger,
    safe_log,
)


def event(action=ActivityAction.STEP_STARTED, target="step-a", trace_id="t1", **payload):
    return ActivityEvent(action=action, target=target, payload=payload, trace_id=trace_id)


class TestActivityJournal:
    def test_records_history_in_order(self):
        journal = ActivityJournal()
        journal.log(event(ActivityAction.FLOW_STARTED, "flow"))
        journal.log(event(ActivityAction.STEP_STARTED))

        assert journal.actions() == ["flow.started", "flow.step.started"]

    def test_history_is_bounded(self):
        journal = ActivityJournal(max_history=3)
        for i in range(5):
            journal.log(event(target=f"s{i}"))

        assert [e.target for e in journal.get_history()] == ["s2", "s3", "s4"]

    def test_history_filters(self):
        journal = ActivityJournal()
        journal.log(event(ActivityAction.STEP_STARTED, "a", "t1"))
        journal.log(event(ActivityAction.STEP_FAILED, "a", "t1"))
        journal.log(event(ActivityAction.STEP_FAILED, "b", "t2"))

        assert len(journal.get_history(action=ActivityAction.STEP_FAILED)) == 2
        assert len(journal.get_history(target="a")) == 2
        assert len(journal.get_history(trace_id="t2")) == 1
        assert len(journal.get_history(limit=1)) == 1

    def test_subscriptions_with_filters(self):
        journal = ActivityJournal()
        received = []
        journal.subscribe([ActivityAction.STEP_FAILED], received.append, filter_target="a")

        journal.log(event(ActivityAction.STEP_FAILED, "a"))
        journal.log(event(ActivityAction.STEP_FAILED, "b"))
        journal.log(event(ActivityAction.STEP_STARTED, "a"))

        assert [(str(e.action), e.target) for e in received] == [("flow.step.failed", "a")]

    def test_unsubscribe(self):
        journal = ActivityJournal()
        received = []
        sub_id = journal.subscribe([ActivityAction.STEP_STARTED], received.append)

        assert journal.unsubscribe(sub_id) is True
        assert journal.unsubscribe(sub_id) is False
        journal.log(event())
        assert received == []

    def test_failing_handler_does_not_stop_others(self):
        journal = ActivityJournal()
        received = []

        def broken(_):
            raise ValueError("handler bug")

        journal.subscribe([ActivityAction.STEP_STARTED], broken)
        journal.subscribe([ActivityAction.STEP_STARTED], received.append)
        journal.log(event())

        assert len(received) == 1

    def test_stats_and_clear(self):
        journal = ActivityJournal()
        journal.subscribe([ActivityAction.STEP_STARTED], lambda e: None)
        journal.log(event())
        journal.log(event())

        stats = journal.get_stats()
        assert stats["total_events"] == 2
        assert stats["subscriptions"] == 1
        assert stats["events_by_action"] == {"flow.step.started": 2}

        journal.clear()
        assert journal.get_history() == []


def test_event_to_dict():
    data = event(ActivityAction.STEP_COMPLETED, attempts=2).to_dict()
    assert data["action"] == "flow.step.completed"
    assert data["payload"] == {"attempts": 2}
    assert data["trace_id"] == "t1"
    assert "timestamp" in data


def test_sinks_satisfy_protocol():
    assert isinstance(ActivityJournal(), ActivityLogger)
    assert isinstance(NullActivityLogger(), ActivityLogger)
    assert isinstance(LoggingActivityLogger(), ActivityLogger)


def test_safe_log_swallows_sink_errors(caplog):
    class Broken:
        def log(self, event):
            raise RuntimeError("disk full")

    with caplog.at_level(logging.WARNING, logger="flowengine.runtime.activity"):
        safe_log(Broken(), event())

    assert "disk full" in caplog.text


def test_safe_log_without_sink():
    safe_log(None, event())


def test_logging_sink_uses_warning_for_failures(caplog):
    sink = LoggingActivityLogger(name="flowengine.activity.test")
    with caplog.at_level(logging.INFO, logger="flowengine.activity.test"):
        sink.log(event(ActivityAction.STEP_COMPLETED, attempts=1))
        sink.log(event(ActivityAction.STEP_FAILED, error="boom"))

    levels = [(r.levelno, r.getMessage()) for r in caplog.records]
    assert levels[0] == (logging.INFO, "flow.step.completed step-a (attempts=1)")
    assert levels[1] == (logging.WARNING, "flow.step.failed step-a (error=boom)")
    assert caplog.records[1].event == "flow.step.failed"
