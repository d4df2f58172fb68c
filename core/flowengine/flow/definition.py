"""
Flow Definition - The declarative shape of a multi-agent flow.

A flow is a set of named steps. Each step invokes one agent, declares which
steps it depends on, how its input is composed and how often it may be
retried. Definitions are immutable once loaded.

Field names follow Python conventions; the camelCase names used by authored
flow files (dependsOn, backoffMs, maxParallelism, ...) are accepted as aliases:

    FlowDefinition.model_validate({
        "id": "review",
        "name": "Code Review",
        "steps": [
            {"id": "lint", "name": "Lint", "agent": "linter"},
            {
                "id": "summary",
                "name": "Summary",
                "agent": "writer",
                "dependsOn": ["lint"],
                "input": {"source": "aggregate", "from": ["lint"]},
            },
        ],
        "output": {"from": "summary"},
    })
"""

import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class InputSource(StrEnum):
    """Where a step's input comes from."""

    REQUEST = "request"  # The user prompt of the flow run
    AGGREGATE = "aggregate"  # Outputs of one or more earlier steps
    STEP = "step"  # Output of a single earlier step


class TransformKind(StrEnum):
    """Named transforms applied to a step's collected input."""

    PASSTHROUGH = "passthrough"
    EXTRACT_CODE = "extract_code"
    MERGE_AS_CONTEXT = "merge_as_context"
    EXTRACT_SECTION = "extract_section"
    APPEND_TO_REQUEST = "append_to_request"
    JSON_EXTRACT = "json_extract"
    TEMPLATE_FILL = "template_fill"


class OutputFormat(StrEnum):
    """How multiple output steps are combined into the flow output."""

    MARKDOWN = "markdown"
    JSON = "json"
    CONCAT = "concat"


_MODEL_CONFIG = {"frozen": True, "populate_by_name": True, "extra": "ignore"}


class InputSpec(BaseModel):
    """How a step's input is resolved."""

    source: InputSource = InputSource.REQUEST
    from_: tuple[str, ...] | None = Field(default=None, alias="from")
    step_id: str | None = Field(default=None, alias="stepId")
    transform: TransformKind = TransformKind.PASSTHROUGH
    transform_args: Any = Field(default=None, alias="transformArgs")

    model_config = _MODEL_CONFIG

    @property
    def sources(self) -> tuple[str, ...]:
        """Step ids this input reads from, in declared order."""
        if self.source == InputSource.AGGREGATE:
            return tuple(self.from_ or ())
        if self.source == InputSource.STEP:
            return (self.step_id,) if self.step_id else ()
        return ()


class RetrySpec(BaseModel):
    """Retry policy for a single step."""

    max_attempts: int = Field(default=1, ge=1, alias="maxAttempts")
    backoff_ms: int = Field(default=1000, ge=0, alias="backoffMs")

    model_config = _MODEL_CONFIG


class StepDefinition(BaseModel):
    """A single node in the flow graph."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    agent: str = Field(min_length=1, description="Capability identifier")
    depends_on: tuple[str, ...] = Field(default=(), alias="dependsOn")
    input: InputSpec = Field(default_factory=InputSpec)
    retry: RetrySpec = Field(default_factory=RetrySpec)
    timeout_ms: int | None = Field(
        default=None, gt=0, alias="timeout", description="Per-attempt timeout"
    )
    condition: str | None = Field(
        default=None, description="Expression deciding at dispatch time whether the step runs"
    )

    model_config = _MODEL_CONFIG

    @property
    def requires(self) -> tuple[str, ...]:
        """Every step that must terminate before this one can be resolved."""
        seen: dict[str, None] = dict.fromkeys(self.depends_on)
        for source in self.input.sources:
            seen.setdefault(source, None)
        return tuple(seen)


class OutputSpec(BaseModel):
    """Which step(s) produce the flow's final output."""

    from_: str | tuple[str, ...] = Field(alias="from")
    format: OutputFormat = OutputFormat.MARKDOWN

    model_config = _MODEL_CONFIG

    @property
    def step_ids(self) -> tuple[str, ...]:
        if isinstance(self.from_, str):
            return (self.from_,)
        return tuple(self.from_)


class FlowSettings(BaseModel):
    """Flow-wide execution settings."""

    max_parallelism: int = Field(default=3, ge=1, alias="maxParallelism")
    fail_fast: bool = Field(default=True, alias="failFast")
    timeout_ms: int | None = Field(default=None, gt=0, alias="timeout")

    model_config = _MODEL_CONFIG


class FlowDefinition(BaseModel):
    """
    A complete flow: steps, output selection and settings.

    Structural checks beyond field types (unique ids, known references,
    acyclicity) belong to GraphValidator, which runs before execution.
    """

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    version: str = "1.0.0"
    steps: tuple[StepDefinition, ...] = ()
    output: OutputSpec
    settings: FlowSettings = Field(default_factory=FlowSettings)

    model_config = _MODEL_CONFIG

    @property
    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> StepDefinition | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class ExecutionContext(BaseModel):
    """Per-run request data. Supplied once per execute() call, read-only."""

    user_prompt: str = Field(alias="userPrompt")
    trace_id: str = Field(default_factory=lambda: uuid.uuid4().hex, alias="traceId")
    request_id: str | None = Field(default=None, alias="requestId")

    model_config = _MODEL_CONFIG
