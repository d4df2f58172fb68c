"""Tests for the flowengine command-line interface."""

import json
import shutil
import sys
from pathlib import Path

import pytest

from flowengine.agents import MockAgentInvoker
from flowengine.cli import EXIT_FAILED, EXIT_INVALID, EXIT_OK, _resolve_invoker, main


@pytest.fixture(autouse=True)
def keep_root_logging():
    """main() reconfigures the root logger; put it back afterwards."""
    import logging

    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def audit_flow(fixtures_dir: Path) -> str:
    return str(fixtures_dir / "security-audit.flow.json")


@pytest.fixture
def cyclic_flow(tmp_path: Path) -> str:
    path = tmp_path / "cyclic.flow.json"
    path.write_text(
        json.dumps(
            {
                "id": "cyclic",
                "name": "Cyclic",
                "steps": [
                    {"id": "a", "name": "A", "agent": "x", "dependsOn": ["b"]},
                    {"id": "b", "name": "B", "agent": "x", "dependsOn": ["a"]},
                ],
                "output": {"from": "a"},
            }
        )
    )
    return str(path)


def test_validate_ok(audit_flow, capsys):
    assert main(["validate", audit_flow]) == EXIT_OK
    assert "security-audit-flow: 6 steps, 3 waves" in capsys.readouterr().out


def test_validate_cycle(cyclic_flow, capsys):
    assert main(["validate", cyclic_flow]) == EXIT_INVALID
    assert "[cycle]" in capsys.readouterr().err


def test_validate_missing_file(tmp_path, capsys):
    assert main(["validate", str(tmp_path / "nope.flow.json")]) == EXIT_INVALID
    assert "Cannot read" in capsys.readouterr().err


def test_list(tmp_path, audit_flow, capsys):
    shutil.copy(audit_flow, tmp_path / "audit.flow.json")
    assert main(["list", str(tmp_path)]) == EXIT_OK
    out = capsys.readouterr().out
    assert "security-audit-flow" in out
    assert "audit.flow.json" in out


def test_list_uses_configured_flows_dir(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("FLOWENGINE_FLOWS_DIR", str(tmp_path))
    assert main(["list"]) == EXIT_OK
    assert f"No flows found in {tmp_path}" in capsys.readouterr().out


def test_show_prints_waves(audit_flow, capsys):
    assert main(["show", audit_flow]) == EXIT_OK
    out = capsys.readouterr().out
    assert "Wave 1:" in out
    assert "Wave 3:" in out
    assert "remediation-planning [security-synthesizer]" in out
    assert "Output: remediation-planning (markdown)" in out


def test_run_with_mock_json(audit_flow, capsys):
    assert main(["run", audit_flow, "--request", "Audit auth", "--mock", "--json"]) == EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "completed"
    assert data["summary"]["completed"] == 6
    assert data["output"].startswith("[security-synthesizer] ## code-security-scan")


def test_run_requires_an_invoker(audit_flow, capsys):
    assert main(["run", audit_flow, "--request", "Audit auth"]) == EXIT_INVALID
    assert "--mock" in capsys.readouterr().err


def test_run_with_custom_invoker(tmp_path, monkeypatch, capsys):
    module = tmp_path / "failing_agents.py"
    module.write_text(
        "from flowengine.agents import MockAgentInvoker\n"
        "\n"
        "def build():\n"
        "    return MockAgentInvoker(failing={'x': 'offline'})\n"
    )
    flow = tmp_path / "one.flow.json"
    flow.write_text(
        json.dumps(
            {
                "id": "one",
                "name": "One",
                "steps": [{"id": "only", "name": "Only", "agent": "x"}],
                "output": {"from": "only"},
            }
        )
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.syspath_prepend(str(tmp_path))

    assert main(["run", str(flow), "-r", "go", "--invoker", "failing_agents:build"]) == EXIT_FAILED
    out = capsys.readouterr().out
    assert "only" in out
    assert "RuntimeError: offline" in out


def test_run_with_bad_invoker_spec(audit_flow, capsys):
    assert main(["run", audit_flow, "-r", "go", "--invoker", "no_colon"]) == EXIT_INVALID
    assert "cannot load invoker" in capsys.readouterr().err


def test_resolving_invoker_adds_working_directory_to_path_once(tmp_path, monkeypatch):
    (tmp_path / "steady_agents.py").write_text(
        "from flowengine.agents import MockAgentInvoker\n"
        "\n"
        "invoker = MockAgentInvoker()\n"
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, "path", list(sys.path))
    monkeypatch.delitem(sys.modules, "steady_agents", raising=False)

    first = _resolve_invoker("steady_agents:invoker")
    second = _resolve_invoker("steady_agents:invoker")

    assert isinstance(first, MockAgentInvoker)
    assert second is first
    assert sys.path.count(str(Path.cwd())) == 1
