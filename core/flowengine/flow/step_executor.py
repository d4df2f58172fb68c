"""
Step Executor - runs one step's agent call with retry and backoff.

The executor:
1. Checks the cancellation token before each attempt
2. Invokes the agent (bounded by the step's per-attempt timeout, if any)
3. On failure, waits backoff_ms and retries, up to max_attempts in total
4. Returns a StepResult recording the attempts actually used
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime

from flowengine.agents.invoker import AgentInvoker, AgentResponse
from flowengine.flow.definition import ExecutionContext, StepDefinition
from flowengine.flow.errors import StepCancelledError, StepExecutionError
from flowengine.flow.result import StepErrorKind, StepResult, StepStatus
from flowengine.observability import set_trace_context
from flowengine.runtime.activity import ActivityAction, ActivityEvent, ActivityLogger, safe_log

SleepFn = Callable[[float], Awaitable[None]]


class StepExecutor:
    """
    Executes single steps against an AgentInvoker.

    Example:
        executor = StepExecutor(invoker=my_invoker)
        result = await executor.run(step, "resolved input", context)
    """

    def __init__(
        self,
        invoker: AgentInvoker,
        activity_logger: ActivityLogger | None = None,
        sleep: SleepFn | None = None,
        flow_run_id: str = "",
    ):
        """
        Initialize the executor.

        Args:
            invoker: Agent invoker used for every attempt
            activity_logger: Optional sink for step lifecycle events
            sleep: Backoff sleep function (defaults to asyncio.sleep)
            flow_run_id: Flow run id included in activity payloads
        """
        self.invoker = invoker
        self.activity_logger = activity_logger
        self.flow_run_id = flow_run_id
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

    async def run(
        self,
        step: StepDefinition,
        resolved_input: str,
        context: ExecutionContext,
        cancel: asyncio.Event | None = None,
    ) -> StepResult:
        """
        Run a step until it succeeds or its attempts are exhausted.

        Args:
            step: The step to run
            resolved_input: Input produced by the InputAggregator
            context: The flow run's request context
            cancel: Set when the flow stops dispatching; checked before each
                attempt and before each backoff

        Returns:
            StepResult with success, output or last error, and attempt count
        """
        set_trace_context(step_id=step.id)
        started_at = datetime.now()
        max_attempts = step.retry.max_attempts
        attempts = 0
        last_error: str | None = None
        abandoned = False

        self._emit(
            ActivityAction.STEP_STARTED,
            step.id,
            context,
            agent=step.agent,
            max_attempts=max_attempts,
            input_length=len(resolved_input),
        )

        for attempt in range(1, max_attempts + 1):
            if cancel is not None and cancel.is_set():
                if attempts == 0:
                    return self._cancelled(step, context, started_at)
                abandoned = True
                break

            attempts = attempt
            attempt_start = time.monotonic()
            self.logger.info(f"   ▶ {step.id}: executing {step.agent} (attempt {attempt}/{max_attempts})")

            try:
                response = await self._invoke_once(step, resolved_input, context)
            except StepExecutionError as e:
                last_error = str(e)
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            else:
                elapsed_ms = int((time.monotonic() - attempt_start) * 1000)
                self.logger.info(
                    f"   ✓ {step.id}: success on attempt {attempt} ({elapsed_ms}ms)",
                    extra={"latency_ms": elapsed_ms},
                )
                result = StepResult(
                    step_id=step.id,
                    success=True,
                    status=StepStatus.COMPLETED,
                    started_at=started_at,
                    completed_at=datetime.now(),
                    result=response,
                    attempts=attempts,
                )
                self._emit(
                    ActivityAction.STEP_COMPLETED,
                    step.id,
                    context,
                    agent=step.agent,
                    attempts=attempts,
                    duration_ms=result.duration_ms,
                    output_length=len(response.content),
                )
                return result

            elapsed_ms = int((time.monotonic() - attempt_start) * 1000)
            self.logger.warning(
                f"   ✗ {step.id}: attempt {attempt}/{max_attempts} failed after "
                f"{elapsed_ms}ms: {last_error}",
                extra={"latency_ms": elapsed_ms},
            )

            if attempt < max_attempts:
                if cancel is not None and cancel.is_set():
                    abandoned = True
                    break
                backoff_s = step.retry.backoff_ms / 1000
                self._emit(
                    ActivityAction.STEP_RETRYING,
                    step.id,
                    context,
                    attempt=attempt,
                    backoff_ms=step.retry.backoff_ms,
                    error=last_error,
                )
                self.logger.info(f"   ↻ {step.id}: retrying in {backoff_s}s")
                sleep = self._sleep if self._sleep is not None else asyncio.sleep
                await sleep(backoff_s)

        error = last_error or "Unknown error"
        if abandoned:
            error = f"{error} (retries abandoned: flow stopped dispatching)"
        result = StepResult(
            step_id=step.id,
            success=False,
            status=StepStatus.FAILED,
            started_at=started_at,
            completed_at=datetime.now(),
            error=error,
            error_kind=StepErrorKind.STEP_EXECUTION,
            attempts=attempts,
        )
        self.logger.error(f"   ✗ {step.id}: failed after {attempts} attempt(s)")
        self._emit(
            ActivityAction.STEP_FAILED,
            step.id,
            context,
            agent=step.agent,
            attempts=attempts,
            duration_ms=result.duration_ms,
            error=error,
            error_kind=StepErrorKind.STEP_EXECUTION.value,
        )
        return result

    async def _invoke_once(
        self,
        step: StepDefinition,
        resolved_input: str,
        context: ExecutionContext,
    ) -> AgentResponse:
        """Run one attempt. An error signal in the response is raised as StepExecutionError."""
        call = self.invoker.invoke(step.agent, resolved_input, context)
        if step.timeout_ms is None:
            response = await call
        else:
            try:
                response = await asyncio.wait_for(call, timeout=step.timeout_ms / 1000)
            except TimeoutError:
                raise TimeoutError(f"attempt exceeded step timeout of {step.timeout_ms}ms") from None
        if not response.ok:
            raise StepExecutionError(step.id, response.error or "Agent returned an error")
        return response

    def _cancelled(
        self,
        step: StepDefinition,
        context: ExecutionContext,
        started_at: datetime,
    ) -> StepResult:
        self.logger.info(f"   ⊘ {step.id}: cancelled before first attempt")
        error = StepCancelledError("Step cancelled before its first attempt")
        result = StepResult.not_run(
            step.id,
            StepStatus.CANCELLED,
            str(error),
            StepErrorKind.CANCELLED,
            started_at=started_at,
        )
        self._emit(
            ActivityAction.STEP_CANCELLED,
            step.id,
            context,
            reason=result.error,
        )
        return result

    def _emit(
        self,
        action: ActivityAction,
        step_id: str,
        context: ExecutionContext,
        **payload,
    ) -> None:
        safe_log(
            self.activity_logger,
            ActivityEvent(
                action=action,
                target=step_id,
                payload={"flow_run_id": self.flow_run_id, **payload},
                trace_id=context.trace_id,
            ),
        )
