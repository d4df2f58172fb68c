"""Tests for FlowLoader (JSON and YAML flow files)."""

import json
from pathlib import Path

import pytest

from flowengine.flow.definition import InputSource, OutputFormat
from flowengine.flow.errors import FlowLoadError
from flowengine.flow.loader import FlowLoader

YAML_FLOW = """\
id: review-flow
name: Review
steps:
  - id: extract
    name: Extract
    agent: code-extractor
    input:
      source: request
      transform: extract_code
  - id: review
    name: Review
    agent: reviewer
    dependsOn: [extract]
    input:
      source: step
      stepId: extract
output:
  from: [extract, review]
  format: concat
settings:
  maxParallelism: 2
"""


class TestFlowLoader:
    def test_loads_json_fixture(self, fixtures_dir: Path):
        flow = FlowLoader().load(fixtures_dir / "security-audit.flow.json")
        assert flow.id == "security-audit-flow"
        assert len(flow.steps) == 6
        assert flow.settings.max_parallelism == 4
        assert flow.settings.fail_fast is False
        assert flow.output.step_ids == ("remediation-planning",)

    def test_loads_yaml(self, tmp_path: Path):
        path = tmp_path / "review.flow.yaml"
        path.write_text(YAML_FLOW)

        flow = FlowLoader().load(path)

        assert flow.id == "review-flow"
        assert flow.steps[1].input.source == InputSource.STEP
        assert flow.steps[1].requires == ("extract",)
        assert flow.output.format == OutputFormat.CONCAT
        assert flow.output.step_ids == ("extract", "review")

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FlowLoadError, match="Cannot read") as exc_info:
            FlowLoader().load(tmp_path / "missing.flow.json")
        assert exc_info.value.path.endswith("missing.flow.json")

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "broken.flow.json"
        path.write_text("{not json")
        with pytest.raises(FlowLoadError, match="Invalid JSON"):
            FlowLoader().load(path)

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "broken.flow.yaml"
        path.write_text("steps: [unclosed")
        with pytest.raises(FlowLoadError, match="Invalid YAML"):
            FlowLoader().load(path)

    def test_non_object_document(self, tmp_path: Path):
        path = tmp_path / "list.flow.json"
        path.write_text("[1, 2]")
        with pytest.raises(FlowLoadError, match="must be an object"):
            FlowLoader().load(path)

    def test_schema_problems_are_reported(self, tmp_path: Path):
        path = tmp_path / "bad.flow.json"
        path.write_text(
            json.dumps(
                {
                    "id": "bad",
                    "name": "Bad",
                    "steps": [{"id": "a", "name": "A", "agent": "x", "retry": {"maxAttempts": 0}}],
                    "output": {"from": "a"},
                }
            )
        )
        with pytest.raises(FlowLoadError, match="steps.0.retry.maxAttempts"):
            FlowLoader().load(path)

    def test_discover_skips_broken_and_unrelated_files(self, tmp_path: Path, fixtures_dir: Path):
        (tmp_path / "a.flow.yaml").write_text(YAML_FLOW)
        (tmp_path / "b.flow.json").write_text((fixtures_dir / "security-audit.flow.json").read_text())
        (tmp_path / "c.flow.json").write_text("{")
        (tmp_path / "notes.json").write_text("{}")

        flows = FlowLoader().discover(tmp_path)

        assert [(p.name, f.id) for p, f in flows] == [
            ("a.flow.yaml", "review-flow"),
            ("b.flow.json", "security-audit-flow"),
        ]

    def test_discover_missing_directory(self, tmp_path: Path):
        with pytest.raises(FlowLoadError, match="not found"):
            FlowLoader().discover(tmp_path / "nope")
