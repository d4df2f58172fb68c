"""Tests for trace context propagation and log formatters."""

import asyncio
import json
import logging

import pytest

from flowengine.observability import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)
from flowengine.observability.logging import HumanReadableFormatter, StructuredFormatter


def make_record(message="hello", level=logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("flowengine.test", level, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_set_merges_and_clear_resets():
    set_trace_context(trace_id="abc", flow_id="audit")
    set_trace_context(step_id="scan")
    assert get_trace_context() == {"trace_id": "abc", "flow_id": "audit", "step_id": "scan"}

    clear_trace_context()
    assert get_trace_context() == {}


@pytest.mark.asyncio
async def test_step_context_does_not_leak_between_tasks():
    set_trace_context(flow_id="audit")

    async def step(step_id):
        set_trace_context(step_id=step_id)
        await asyncio.sleep(0)
        return get_trace_context()

    first, second = await asyncio.gather(
        asyncio.create_task(step("a")), asyncio.create_task(step("b"))
    )

    assert first == {"flow_id": "audit", "step_id": "a"}
    assert second == {"flow_id": "audit", "step_id": "b"}
    assert "step_id" not in get_trace_context()


def test_structured_formatter_includes_context_and_extras():
    set_trace_context(trace_id="abc123", flow_run_id="run-1", step_id="scan")
    record = make_record("\033[32mdone\033[0m", event="flow.step.completed", latency_ms=12)

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["message"] == "done"
    assert entry["level"] == "info"
    assert entry["trace_id"] == "abc123"
    assert entry["flow_run_id"] == "run-1"
    assert entry["step_id"] == "scan"
    assert entry["event"] == "flow.step.completed"
    assert entry["latency_ms"] == 12


def test_human_formatter_prefix():
    set_trace_context(trace_id="0123456789abcdef", flow_id="audit", step_id="scan")
    line = HumanReadableFormatter(use_color=False).format(make_record("started"))
    assert line == "[INFO    ] [trace:01234567 | flow:audit | step:scan] started"


def test_configure_logging_installs_single_handler(monkeypatch):
    monkeypatch.delenv("NO_COLOR", raising=False)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(level="debug", format="json")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert root.level == logging.DEBUG
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
