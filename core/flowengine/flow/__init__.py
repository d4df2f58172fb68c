"""Flow definitions, validation, scheduling and execution."""

from flowengine.flow.aggregator import InputAggregator
from flowengine.flow.conditions import ConditionEvaluator, ConditionResult, safe_eval
from flowengine.flow.definition import (
    ExecutionContext,
    FlowDefinition,
    FlowSettings,
    InputSource,
    InputSpec,
    OutputFormat,
    OutputSpec,
    RetrySpec,
    StepDefinition,
    TransformKind,
)
from flowengine.flow.errors import (
    AggregationError,
    ConditionError,
    FlowEngineError,
    FlowLoadError,
    FlowTimeoutError,
    FlowValidationError,
    StepCancelledError,
    StepExecutionError,
    TransformError,
    ValidationErrorKind,
)
from flowengine.flow.loader import FlowLoader
from flowengine.flow.output import aggregate_output
from flowengine.flow.result import FlowResult, FlowStatus, StepErrorKind, StepResult, StepStatus
from flowengine.flow.runner import FlowRunner
from flowengine.flow.scheduler import Scheduler, SchedulerOutcome, StopReason, StopSignal
from flowengine.flow.step_executor import StepExecutor
from flowengine.flow.store import StepOutputStore
from flowengine.flow.transforms import SourceOutput, apply_transform
from flowengine.flow.validator import ExecutionPlan, GraphValidator, PlanNode, validate_flow

__all__ = [
    # Definition
    "FlowDefinition",
    "StepDefinition",
    "InputSpec",
    "InputSource",
    "RetrySpec",
    "OutputSpec",
    "OutputFormat",
    "FlowSettings",
    "TransformKind",
    "ExecutionContext",
    # Validation
    "GraphValidator",
    "ExecutionPlan",
    "PlanNode",
    "validate_flow",
    # Execution
    "FlowRunner",
    "Scheduler",
    "SchedulerOutcome",
    "StopReason",
    "StopSignal",
    "StepExecutor",
    "InputAggregator",
    "ConditionEvaluator",
    "ConditionResult",
    "safe_eval",
    "StepOutputStore",
    "SourceOutput",
    "apply_transform",
    "aggregate_output",
    "FlowLoader",
    # Results
    "FlowResult",
    "FlowStatus",
    "StepResult",
    "StepStatus",
    "StepErrorKind",
    # Errors
    "FlowEngineError",
    "FlowValidationError",
    "ValidationErrorKind",
    "FlowLoadError",
    "AggregationError",
    "TransformError",
    "StepExecutionError",
    "FlowTimeoutError",
    "StepCancelledError",
    "ConditionError",
]
