"""Shared fixtures for the flowengine test suite."""

from pathlib import Path

import pytest

from flowengine.config import RuntimeConfig
from flowengine.observability import clear_trace_context
from flowengine.runtime import ActivityJournal

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep the user's real ~/.flowengine/configuration.json out of tests."""
    monkeypatch.setenv("FLOWENGINE_CONFIG", str(tmp_path / "no-config.json"))
    monkeypatch.delenv("FLOWENGINE_LOG_LEVEL", raising=False)
    monkeypatch.delenv("FLOWENGINE_FLOWS_DIR", raising=False)


@pytest.fixture(autouse=True)
def reset_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()


@pytest.fixture
def config():
    return RuntimeConfig(
        flows_dir="flows",
        log_level="INFO",
        log_format="human",
        default_timeout_ms=None,
        max_parallelism_cap=None,
    )


@pytest.fixture
def journal():
    return ActivityJournal()


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR
