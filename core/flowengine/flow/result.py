"""Run-time results: one StepResult per declared step, one FlowResult per run."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from flowengine.agents.invoker import AgentResponse


class StepStatus(StrEnum):
    """Terminal state of a step."""

    COMPLETED = "completed"  # Ran and succeeded
    FAILED = "failed"  # Ran (or tried to resolve input) and failed
    SKIPPED = "skipped"  # Never ran: a dependency did not succeed, or its condition was false
    CANCELLED = "cancelled"  # Never ran, or was stopped: fail-fast or timeout


class StepErrorKind(StrEnum):
    """Which part of the engine produced a step's error."""

    STEP_EXECUTION = "step_execution"
    AGGREGATION = "aggregation"
    DEPENDENCY_FAILED = "dependency_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class FlowStatus(StrEnum):
    """Lifecycle of a flow run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class StepResult:
    """Result of one step. Written exactly once into the output store."""

    step_id: str
    success: bool
    status: StepStatus
    started_at: datetime
    completed_at: datetime
    result: AgentResponse | None = None
    error: str | None = None
    error_kind: StepErrorKind | None = None
    attempts: int = 0
    skip_reason: str | None = None

    @property
    def content(self) -> str:
        """Agent output text, or empty string when the step produced none."""
        return self.result.content if self.result else ""

    @property
    def duration_ms(self) -> int:
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "success": self.success,
            "status": self.status.value,
            "result": (
                {"content": self.result.content, "raw": self.result.raw}
                if self.result
                else None
            ),
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "attempts": self.attempts,
            "skip_reason": self.skip_reason,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def not_run(
        cls,
        step_id: str,
        status: StepStatus,
        error: str,
        error_kind: StepErrorKind,
        attempts: int = 0,
        started_at: datetime | None = None,
    ) -> "StepResult":
        """Result for a step that was skipped, cancelled or stopped."""
        now = datetime.now()
        return cls(
            step_id=step_id,
            success=False,
            status=status,
            started_at=started_at or now,
            completed_at=now,
            error=error,
            error_kind=error_kind,
            attempts=attempts,
        )

    @classmethod
    def condition_skipped(cls, step_id: str, reason: str) -> "StepResult":
        """Result for a step whose condition kept it from running. Counts as a success."""
        now = datetime.now()
        return cls(
            step_id=step_id,
            success=True,
            status=StepStatus.SKIPPED,
            started_at=now,
            completed_at=now,
            skip_reason=reason,
        )


@dataclass
class FlowResult:
    """Result of executing a flow. Created fresh per execute() call."""

    flow_run_id: str
    flow_id: str
    success: bool
    status: FlowStatus
    started_at: datetime
    completed_at: datetime
    step_results: dict[str, StepResult] = field(default_factory=dict)
    output: str = ""
    output_from: tuple[str, ...] = ()

    @property
    def duration_ms(self) -> int:
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def get(self, step_id: str) -> StepResult | None:
        return self.step_results.get(step_id)

    def output_result(self) -> StepResult | None:
        """StepResult of the output step when output.from names a single step."""
        if len(self.output_from) != 1:
            return None
        return self.step_results.get(self.output_from[0])

    def steps_with_status(self, status: StepStatus) -> list[str]:
        return [sid for sid, r in self.step_results.items() if r.status == status]

    def summary(self) -> dict[str, int]:
        """Count of steps per terminal status."""
        counts = {status.value: 0 for status in StepStatus}
        for result in self.step_results.values():
            counts[result.status.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_run_id": self.flow_run_id,
            "flow_id": self.flow_id,
            "success": self.success,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "output": self.output,
            "summary": self.summary(),
            "step_results": {sid: r.to_dict() for sid, r in self.step_results.items()},
        }
