"""Tests for the built-in input transforms."""

import json

import pytest

from flowengine.flow.definition import TransformKind
from flowengine.flow.transforms import (
    TRANSFORMS,
    SourceOutput,
    append_to_request,
    apply_transform,
    extract_code,
    extract_section,
    json_extract,
    merge_as_context,
    passthrough,
    template_fill,
)


def test_every_transform_kind_has_an_implementation():
    assert set(TRANSFORMS) == set(TransformKind)


class TestPassthrough:
    def test_single_input_unchanged(self):
        assert passthrough([SourceOutput("request", "hello\nworld")]) == "hello\nworld"

    def test_multiple_inputs_joined_in_order(self):
        inputs = [SourceOutput("a", "first"), SourceOutput("b", "second")]
        assert passthrough(inputs) == "first\n\nsecond"


class TestExtractCode:
    def test_extracts_fenced_blocks(self):
        text = "Please review:\n```python\ndef f():\n    return 1\n```\nThanks"
        assert extract_code([SourceOutput("request", text)]) == "def f():\n    return 1"

    def test_joins_multiple_blocks(self):
        text = "```js\nconst a = 1;\n```\nand\n```\nb = 2\n```"
        assert extract_code([SourceOutput("request", text)]) == "const a = 1;\n\nb = 2"

    def test_no_fences_returns_input_unchanged(self):
        text = "Audit the authentication service"
        assert extract_code([SourceOutput("request", text)]) == text


class TestMergeAsContext:
    def test_labels_and_orders_sections(self):
        inputs = [SourceOutput("A", "alpha"), SourceOutput("B", "beta")]
        assert merge_as_context(inputs) == "## A\n\nalpha\n\n## B\n\nbeta"

    def test_is_deterministic(self):
        inputs = [SourceOutput("scan", "x"), SourceOutput("risk", "y"), SourceOutput("infra", "z")]
        assert merge_as_context(inputs) == merge_as_context(list(inputs))
        assert merge_as_context(inputs).index("## scan") < merge_as_context(inputs).index("## risk")


class TestExtractSection:
    DOC = "# Report\n\n## Summary\nAll good.\nMostly.\n\n## Details\nLong text"

    def test_returns_section_body(self):
        result = extract_section([SourceOutput("a", self.DOC)], "Summary")
        assert result == "All good.\nMostly."

    def test_last_section_runs_to_end(self):
        assert extract_section([SourceOutput("a", self.DOC)], "Details") == "Long text"

    def test_missing_section_raises(self):
        with pytest.raises(ValueError, match="not found"):
            extract_section([SourceOutput("a", self.DOC)], "Appendix")

    def test_requires_section_name(self):
        with pytest.raises(ValueError):
            extract_section([SourceOutput("a", self.DOC)], None)


def test_append_to_request():
    result = append_to_request([SourceOutput("a", "findings")], request="audit repo")
    assert result == "Original: audit repo\n\nStep Output: findings"


class TestJsonExtract:
    def test_nested_path(self):
        content = json.dumps({"report": {"items": [{"name": "xss"}, {"name": "sqli"}]}})
        assert json_extract([SourceOutput("a", content)], "report.items.1.name") == "sqli"

    def test_non_string_values_are_serialized(self):
        content = json.dumps({"score": {"high": 3}})
        assert json.loads(json_extract([SourceOutput("a", content)], "score")) == {"high": 3}

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError, match="Invalid JSON"):
            json_extract([SourceOutput("a", "not json")], "x")

    def test_missing_field_raises(self):
        with pytest.raises(ValueError, match="not found"):
            json_extract([SourceOutput("a", "{}")], "x.y")


class TestTemplateFill:
    def test_fills_placeholders(self):
        inputs = [SourceOutput("a", "Hello {{name}}, level {{level}}")]
        assert template_fill(inputs, {"name": "ops", "level": 2}) == "Hello ops, level 2"

    def test_missing_variable_raises(self):
        with pytest.raises(ValueError, match="Missing context variable: name"):
            template_fill([SourceOutput("a", "Hi {{name}}")], {})

    def test_requires_mapping(self):
        with pytest.raises(ValueError):
            template_fill([SourceOutput("a", "Hi")], "name")


def test_apply_transform_dispatches_by_kind():
    inputs = [SourceOutput("A", "alpha")]
    assert apply_transform(TransformKind.MERGE_AS_CONTEXT, inputs) == "## A\n\nalpha"
    assert apply_transform(TransformKind.PASSTHROUGH, inputs) == "alpha"
