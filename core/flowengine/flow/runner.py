"""
Flow Runner - validates a flow definition and drives it to a FlowResult.

The runner:
1. Validates the definition into an ExecutionPlan (fail closed)
2. Arms the flow deadline, if any
3. Runs the Scheduler until every step has a terminal result
4. Finalizes status, success and output into a FlowResult
"""

import asyncio
import logging
import uuid
from datetime import datetime

from flowengine.agents.invoker import AgentInvoker
from flowengine.config import RuntimeConfig
from flowengine.flow.aggregator import InputAggregator
from flowengine.flow.definition import ExecutionContext, FlowDefinition
from flowengine.flow.errors import FlowTimeoutError, FlowValidationError
from flowengine.flow.output import aggregate_output
from flowengine.flow.result import FlowResult, FlowStatus, StepErrorKind, StepResult, StepStatus
from flowengine.flow.scheduler import Scheduler, StopReason, StopSignal
from flowengine.flow.step_executor import SleepFn, StepExecutor
from flowengine.flow.store import StepOutputStore
from flowengine.flow.validator import ExecutionPlan, GraphValidator
from flowengine.observability import set_trace_context
from flowengine.runtime.activity import ActivityAction, ActivityEvent, ActivityLogger, safe_log


class FlowRunner:
    """
    Executes flow definitions.

    One runner can execute many flows, concurrently if needed; all per-run
    state lives in local variables of `execute()`.

    Example:
        runner = FlowRunner(invoker=FunctionInvoker(agents), activity_logger=journal)
        result = await runner.execute(definition, ExecutionContext(user_prompt="Audit repo X"))
        if result.success:
            print(result.output)
    """

    def __init__(
        self,
        invoker: AgentInvoker,
        activity_logger: ActivityLogger | None = None,
        config: RuntimeConfig | None = None,
        sleep: SleepFn | None = None,
        validator: GraphValidator | None = None,
        aggregator: InputAggregator | None = None,
    ):
        """
        Initialize the runner.

        Args:
            invoker: Agent invoker shared by every step
            activity_logger: Optional sink for lifecycle events
            config: Runtime configuration (defaults to the user's config file)
            sleep: Backoff sleep function, mainly for tests
            validator: Graph validator (defaults to GraphValidator())
            aggregator: Input aggregator (defaults to InputAggregator())
        """
        self.invoker = invoker
        self.activity_logger = activity_logger
        self.config = config if config is not None else RuntimeConfig()
        self.validator = validator or GraphValidator()
        self.aggregator = aggregator or InputAggregator()
        self._sleep = sleep
        self._runs: dict[str, FlowStatus] = {}
        self.logger = logging.getLogger(__name__)

    def validate(self, definition: FlowDefinition, context: ExecutionContext) -> ExecutionPlan:
        """
        Validate a definition, emitting validation activity events.

        Raises:
            FlowValidationError: the definition is not a valid DAG
        """
        self._emit(ActivityAction.FLOW_VALIDATING, definition.id, context, steps=len(definition.steps))
        try:
            plan = self.validator.validate(definition)
        except FlowValidationError as e:
            self.logger.error(f"✗ Flow '{definition.id}' is invalid: {e}")
            self._emit(
                ActivityAction.FLOW_VALIDATION_FAILED,
                definition.id,
                context,
                kind=e.kind.value,
                error=e.message,
                step_ids=list(e.step_ids),
            )
            raise
        self._emit(ActivityAction.FLOW_VALIDATED, definition.id, context, steps=len(plan))
        return plan

    async def execute(self, definition: FlowDefinition, context: ExecutionContext) -> FlowResult:
        """
        Execute a flow.

        Args:
            definition: The flow to run
            context: The request this run serves

        Returns:
            FlowResult with one StepResult per declared step, in declaration order

        Raises:
            FlowValidationError: the definition is invalid; no step has run
        """
        plan = self.validate(definition, context)

        flow_run_id = uuid.uuid4().hex
        set_trace_context(trace_id=context.trace_id, flow_run_id=flow_run_id, flow_id=definition.id)
        self._runs[flow_run_id] = FlowStatus.PENDING

        settings = definition.settings
        max_parallelism = self.config.effective_parallelism(settings.max_parallelism)
        timeout_ms = self.config.effective_timeout_ms(settings.timeout_ms)

        self.logger.info(f"🚀 Starting flow: {definition.name} ({definition.id})")
        self.logger.info(
            f"   Steps: {len(plan)}, max parallelism: {max_parallelism}, "
            f"fail fast: {settings.fail_fast}, timeout: {timeout_ms or 'none'}ms"
        )

        started_at = datetime.now()
        self._runs[flow_run_id] = FlowStatus.RUNNING
        self._emit(
            ActivityAction.FLOW_STARTED,
            definition.id,
            context,
            flow_run_id=flow_run_id,
            steps=len(plan),
            max_parallelism=max_parallelism,
            fail_fast=settings.fail_fast,
            timeout_ms=timeout_ms,
        )

        store = StepOutputStore()
        stop = StopSignal()
        scheduler = Scheduler(
            executor=StepExecutor(
                self.invoker,
                activity_logger=self.activity_logger,
                sleep=self._sleep,
                flow_run_id=flow_run_id,
            ),
            aggregator=self.aggregator,
            activity_logger=self.activity_logger,
            flow_run_id=flow_run_id,
        )

        timer: asyncio.TimerHandle | None = None
        if timeout_ms is not None:
            loop = asyncio.get_running_loop()
            timer = loop.call_later(timeout_ms / 1000, self._on_deadline, stop, definition.id, timeout_ms)

        try:
            outcome = await scheduler.run(
                plan,
                store,
                context,
                max_parallelism=max_parallelism,
                fail_fast=settings.fail_fast,
                stop=stop,
            )
        finally:
            if timer is not None:
                timer.cancel()
            self._runs.pop(flow_run_id, None)

        step_results: dict[str, StepResult] = {}
        for step_id in definition.step_ids:
            result = store.get(step_id)
            if result is None:
                # The scheduler publishes every step; this only guards the result shape
                self.logger.error(f"   ✗ {step_id}: no result recorded, marking cancelled")
                result = StepResult.not_run(
                    step_id, StepStatus.CANCELLED, "No result recorded", StepErrorKind.CANCELLED
                )
            step_results[step_id] = result

        all_succeeded = all(r.success for r in step_results.values())
        if outcome.stop_reason == StopReason.TIMEOUT:
            status = FlowStatus.TIMED_OUT
        elif all_succeeded:
            status = FlowStatus.COMPLETED
        else:
            status = FlowStatus.FAILED

        flow_result = FlowResult(
            flow_run_id=flow_run_id,
            flow_id=definition.id,
            success=status == FlowStatus.COMPLETED,
            status=status,
            started_at=started_at,
            completed_at=datetime.now(),
            step_results=step_results,
            output=aggregate_output(definition.output, step_results),
            output_from=definition.output.step_ids,
        )
        self._finish(flow_result, context, outcome.stopped_by)
        return flow_result

    def run_sync(self, definition: FlowDefinition, context: ExecutionContext) -> FlowResult:
        """Execute a flow from synchronous code."""
        return asyncio.run(self.execute(definition, context))

    def active_runs(self) -> dict[str, FlowStatus]:
        """Flow runs currently in progress, by flow_run_id."""
        return dict(self._runs)

    def _on_deadline(self, stop: StopSignal, flow_id: str, timeout_ms: int) -> None:
        self.logger.warning(f"⏱ Flow '{flow_id}' exceeded its {timeout_ms}ms timeout, aborting")
        stop.trigger(StopReason.TIMEOUT, error=FlowTimeoutError(timeout_ms))

    def _finish(self, result: FlowResult, context: ExecutionContext, stopped_by: str | None) -> None:
        summary = result.summary()
        if result.status == FlowStatus.COMPLETED:
            action = ActivityAction.FLOW_COMPLETED
            self.logger.info(f"✓ Flow '{result.flow_id}' completed in {result.duration_ms}ms")
        elif result.status == FlowStatus.TIMED_OUT:
            action = ActivityAction.FLOW_TIMED_OUT
            self.logger.warning(f"⏱ Flow '{result.flow_id}' timed out after {result.duration_ms}ms")
        else:
            action = ActivityAction.FLOW_FAILED
            failed = result.steps_with_status(StepStatus.FAILED)
            self.logger.warning(f"✗ Flow '{result.flow_id}' failed: {', '.join(failed) or 'no steps failed'}")

        self._emit(
            action,
            result.flow_id,
            context,
            flow_run_id=result.flow_run_id,
            duration_ms=result.duration_ms,
            stopped_by=stopped_by,
            **summary,
        )

    def _emit(self, action: ActivityAction, flow_id: str, context: ExecutionContext, **payload) -> None:
        safe_log(
            self.activity_logger,
            ActivityEvent(action=action, target=flow_id, payload=payload, trace_id=context.trace_id),
        )
