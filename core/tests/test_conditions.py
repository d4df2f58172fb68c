"""Tests for step condition evaluation."""

from datetime import datetime

import pytest

from flowengine.agents import AgentResponse
from flowengine.flow import (
    ConditionError,
    ConditionEvaluator,
    ExecutionContext,
    FlowDefinition,
    StepDefinition,
    StepResult,
    StepStatus,
    safe_eval,
)


def completed(step_id: str, content: str) -> StepResult:
    now = datetime.now()
    return StepResult(
        step_id=step_id,
        success=True,
        status=StepStatus.COMPLETED,
        started_at=now,
        completed_at=now,
        result=AgentResponse(content=content),
        attempts=1,
    )


@pytest.fixture
def names():
    return ConditionEvaluator().build_names(
        {
            "scan": completed("scan", '{"issues": 3, "files": ["a.py", "b.py"]}'),
            "notes": completed("notes", "LGTM"),
        },
        ExecutionContext(user_prompt="Review the auth module", traceId="trace-1"),
        FlowDefinition.model_validate(
            {"id": "review", "name": "Review", "steps": [], "output": {"from": "scan"}}
        ),
    )


class TestSafeEval:
    def test_attribute_and_subscript_access_are_equivalent(self, names):
        assert safe_eval("results.scan.success", names) is True
        assert safe_eval("results['scan']['success']", names) is True

    def test_parsed_json_data(self, names):
        assert safe_eval("results.scan.data['issues'] > 2", names) is True
        assert safe_eval("len(results.scan.data['files']) == 2", names) is True

    def test_non_json_content_has_no_data(self, names):
        assert safe_eval("results.notes.data is None", names) is True
        assert safe_eval("results.notes.content.lower().startswith('lgtm')", names) is True

    def test_request_and_flow(self, names):
        assert safe_eval("'auth' in request.user_prompt", names) is True
        assert safe_eval("flow.id == 'review' and flow.version == '1.0.0'", names) is True

    def test_comprehension_over_results(self, names):
        assert safe_eval("all(r['success'] for r in results.values())", names) is True
        assert safe_eval("[k for k, r in results.items() if r.status == 'completed']", names) == [
            "scan",
            "notes",
        ]

    def test_missing_result_reads_as_none(self, names):
        assert safe_eval("results.absent is None", names) is True

    def test_lowercase_literals(self, names):
        assert safe_eval("results.scan.success == true", names) is True

    @pytest.mark.parametrize(
        "expression",
        [
            "__import__('os').system('true')",
            "open('/etc/passwd')",
            "results.__class__",
            "(lambda: 1)()",
            "request.user_prompt.format(1)",
            "undefined_name",
        ],
    )
    def test_rejects_unsafe_expressions(self, names, expression):
        with pytest.raises(ConditionError):
            safe_eval(expression, names)

    def test_syntax_error(self, names):
        with pytest.raises(ConditionError, match="Invalid condition syntax"):
            safe_eval("results.scan.success ==", names)

    def test_runtime_error_is_wrapped(self, names):
        with pytest.raises(ConditionError, match="ZeroDivisionError"):
            safe_eval("1 / 0", names)


class TestConditionEvaluator:
    def test_empty_condition_executes(self):
        outcome = ConditionEvaluator().evaluate("   ", {})
        assert outcome.should_execute is True
        assert outcome.error is None

    def test_false_condition_has_reason(self, names):
        outcome = ConditionEvaluator().evaluate("results.scan.data['issues'] == 0", names)
        assert outcome.should_execute is False
        assert outcome.error is None
        assert outcome.skip_reason == "Condition 'results.scan.data['issues'] == 0' evaluated to false"

    def test_invalid_condition_does_not_execute(self, names, caplog):
        outcome = ConditionEvaluator().evaluate("results.scan.success &&", names)
        assert outcome.should_execute is False
        assert "Invalid condition syntax" in outcome.error
        assert outcome.skip_reason == outcome.error
        assert "Condition evaluation failed" in caplog.text

    def test_step_without_condition_executes(self):
        step = StepDefinition.model_validate({"id": "a", "name": "A", "agent": "a"})
        definition = FlowDefinition.model_validate(
            {"id": "f", "name": "F", "steps": [], "output": {"from": "a"}}
        )
        outcome = ConditionEvaluator().evaluate_step(
            step, {}, ExecutionContext(user_prompt="hi"), definition
        )
        assert outcome.should_execute is True
