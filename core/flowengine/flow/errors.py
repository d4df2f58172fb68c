"""
Flow engine error taxonomy.

FlowValidationError is the only error FlowRunner.execute() raises; FlowLoadError
comes from FlowLoader. Everything else is raised inside the engine and captured
into StepResult.error / StepResult.error_kind.
"""

from enum import StrEnum


class ValidationErrorKind(StrEnum):
    """Why a flow definition was rejected."""

    EMPTY_FLOW = "empty_flow"
    DUPLICATE_ID = "duplicate_id"
    EMPTY_FROM = "empty_from"
    UNKNOWN_REFERENCE = "unknown_reference"
    CYCLE = "cycle"


class FlowEngineError(Exception):
    """Base class for all flow engine errors."""


class FlowValidationError(FlowEngineError):
    """A flow definition is not a valid DAG. Raised before any step runs."""

    def __init__(
        self,
        kind: ValidationErrorKind,
        message: str,
        step_ids: list[str] | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.step_ids = step_ids or []

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


class FlowLoadError(FlowEngineError):
    """A flow definition file could not be read or parsed."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class AggregationError(FlowEngineError):
    """A step's input could not be built from its sources."""

    def __init__(self, step_id: str, message: str):
        super().__init__(message)
        self.step_id = step_id


class TransformError(AggregationError):
    """A transform rejected its input (bad JSON, missing section, ...)."""


class StepExecutionError(FlowEngineError):
    """An agent call failed. Recorded per attempt, never raised from execute()."""

    def __init__(self, step_id: str, message: str, attempts: int = 1):
        super().__init__(message)
        self.step_id = step_id
        self.attempts = attempts


class FlowTimeoutError(FlowEngineError):
    """The global flow timeout expired."""

    def __init__(self, timeout_ms: int):
        super().__init__(f"Flow timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class StepCancelledError(FlowEngineError):
    """A step was stopped or never started because the flow stopped dispatching."""


class ConditionError(FlowEngineError):
    """A step condition could not be parsed or evaluated."""
