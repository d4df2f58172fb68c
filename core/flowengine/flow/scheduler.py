"""
Scheduler - dispatches ready steps under a concurrency cap.

A single coordinating coroutine owns every decision: computing the ready set,
dispatching, and writing results to the output store. Steps run as asyncio
tasks gated by a semaphore sized to max_parallelism.

Loop:
1. Settle pending steps: any step with a requirement that did not succeed is
   recorded as skipped (failed-by-dependency) without running; steps whose
   requirements all succeeded are ready.
2. Dispatch ready steps in declaration order while slots are free. A step
   with a condition is evaluated first and recorded as skipped, without
   taking a slot, when the condition is false.
3. Wait for the first step to finish (or a stop signal), publish its result,
   and repeat until nothing is pending or running.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from flowengine.flow.aggregator import InputAggregator
from flowengine.flow.conditions import ConditionEvaluator
from flowengine.flow.definition import ExecutionContext, StepDefinition
from flowengine.flow.errors import AggregationError, FlowEngineError
from flowengine.flow.result import StepErrorKind, StepResult, StepStatus
from flowengine.flow.step_executor import StepExecutor
from flowengine.flow.store import StepOutputStore
from flowengine.flow.validator import ExecutionPlan
from flowengine.runtime.activity import ActivityAction, ActivityEvent, ActivityLogger, safe_log


class StopReason(StrEnum):
    """Why the scheduler stopped dispatching early."""

    FAIL_FAST = "fail_fast"
    TIMEOUT = "timeout"


class StopSignal:
    """
    Stop flags shared by the runner, the scheduler and step tasks.

    `event` stops new dispatch and doubles as the step executors' cancellation
    token. `aborted` is set only on timeout and tells the scheduler to cancel
    in-flight steps as well. A timeout overrides an earlier fail-fast stop;
    otherwise the first trigger wins.
    """

    def __init__(self) -> None:
        self.event = asyncio.Event()
        self.aborted = asyncio.Event()
        self.reason: StopReason | None = None
        self.source: str | None = None
        self.error: FlowEngineError | None = None

    def trigger(
        self,
        reason: StopReason,
        source: str | None = None,
        error: FlowEngineError | None = None,
    ) -> None:
        if reason == StopReason.TIMEOUT:
            if self.aborted.is_set():
                return
            self.reason = reason
            self.error = error
            self.aborted.set()
            self.event.set()
            return
        if self.event.is_set():
            return
        self.reason = reason
        self.source = source
        self.event.set()

    def is_set(self) -> bool:
        return self.event.is_set()


@dataclass
class SchedulerOutcome:
    """How a scheduler run ended."""

    stop_reason: StopReason | None = None
    stopped_by: str | None = None  # First failed step under fail-fast
    dispatched: int = 0
    interrupted: int = 0  # Steps cancelled or cut short by the timeout


class Scheduler:
    """
    Drives an ExecutionPlan to completion.

    Example:
        scheduler = Scheduler(executor=StepExecutor(invoker), aggregator=InputAggregator())
        outcome = await scheduler.run(plan, store, context, max_parallelism=4, fail_fast=True)
    """

    def __init__(
        self,
        executor: StepExecutor,
        aggregator: InputAggregator | None = None,
        activity_logger: ActivityLogger | None = None,
        flow_run_id: str = "",
        conditions: ConditionEvaluator | None = None,
    ):
        self.executor = executor
        self.aggregator = aggregator or InputAggregator()
        self.conditions = conditions or ConditionEvaluator()
        self.activity_logger = activity_logger
        self.flow_run_id = flow_run_id
        self.logger = logging.getLogger(__name__)

    async def run(
        self,
        plan: ExecutionPlan,
        store: StepOutputStore,
        context: ExecutionContext,
        max_parallelism: int,
        fail_fast: bool,
        stop: StopSignal | None = None,
    ) -> SchedulerOutcome:
        """
        Run every step in the plan to a terminal result.

        Args:
            plan: Validated execution plan
            store: Output store; the scheduler is its only writer
            context: The flow run's request context
            max_parallelism: Maximum number of steps running at once
            fail_fast: Stop dispatching after the first failed step
            stop: External stop signal (the runner triggers it on timeout)

        Returns:
            SchedulerOutcome; on return every plan step has a result in `store`
        """
        stop = stop or StopSignal()
        outcome = SchedulerOutcome()
        semaphore = asyncio.Semaphore(max_parallelism)
        pending: list[int] = [node.index for node in plan.nodes]
        running: dict[asyncio.Task, int] = {}
        dispatched_at: dict[int, datetime] = {}

        def record(result: StepResult) -> None:
            store.publish(result)
            if fail_fast and not result.success and not stop.is_set():
                self.logger.warning(f"⚠ Fail-fast: '{result.step_id}' failed, stopping dispatch")
                stop.trigger(StopReason.FAIL_FAST, result.step_id)

        try:
            while pending or running:
                if not stop.is_set():
                    published_without_task = False
                    for idx in self._settle(plan, pending, store, context):
                        if len(running) >= max_parallelism or stop.is_set():
                            break
                        node = plan.nodes[idx]
                        pending.remove(idx)
                        if node.step.condition:
                            skipped = self._check_condition(plan, node.step, store, context)
                            if skipped is not None:
                                record(skipped)
                                published_without_task = True
                                continue

                        try:
                            resolved = self.aggregator.resolve(node.step, store, context)
                        except AggregationError as e:
                            self.logger.error(f"   ✗ {node.step_id}: input resolution failed: {e}")
                            result = StepResult.not_run(
                                node.step_id,
                                StepStatus.FAILED,
                                str(e),
                                StepErrorKind.AGGREGATION,
                            )
                            self._emit(
                                ActivityAction.STEP_FAILED,
                                node.step_id,
                                context,
                                error=str(e),
                                error_kind=StepErrorKind.AGGREGATION.value,
                                attempts=0,
                            )
                            record(result)
                            published_without_task = True
                            continue

                        dispatched_at[idx] = datetime.now()
                        task = asyncio.create_task(
                            self._run_step(semaphore, node.step, resolved, context, stop),
                            name=f"step:{node.step_id}",
                        )
                        running[task] = idx
                        outcome.dispatched += 1

                    if published_without_task and not stop.is_set():
                        continue

                if stop.is_set():
                    outcome.interrupted += self._cancel_pending(plan, pending, store, context, stop)
                    if stop.aborted.is_set() and running:
                        outcome.interrupted += await self._abort_running(
                            plan, running, dispatched_at, store, context, stop
                        )
                        break

                if not running:
                    if pending:
                        # A validated plan always has a ready or skippable step here
                        raise RuntimeError(
                            f"Scheduler stalled with pending steps: "
                            f"{[plan.nodes[i].step_id for i in pending]}"
                        )
                    break

                waiting_on: set[asyncio.Future] = set(running)
                abort_waiter: asyncio.Future | None = None
                if not stop.aborted.is_set():
                    abort_waiter = asyncio.ensure_future(stop.aborted.wait())
                    waiting_on.add(abort_waiter)
                try:
                    done, _ = await asyncio.wait(waiting_on, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    if abort_waiter is not None and not abort_waiter.done():
                        abort_waiter.cancel()

                for task in done:
                    if task is abort_waiter:
                        continue
                    running.pop(task)
                    record(task.result())
        finally:
            # Only non-empty when run() itself is cancelled or fails
            for task in running:
                task.cancel()

        outcome.stop_reason = stop.reason
        if stop.reason == StopReason.TIMEOUT and not outcome.interrupted:
            # The deadline fired after every step already had its result
            outcome.stop_reason = StopReason.FAIL_FAST if stop.source else None
        outcome.stopped_by = stop.source
        return outcome

    def _settle(
        self,
        plan: ExecutionPlan,
        pending: list[int],
        store: StepOutputStore,
        context: ExecutionContext,
    ) -> list[int]:
        """
        Skip steps whose requirements failed and return the ready ones.

        Repeats until no more skips happen, since a skip can make a
        previously declared step skippable too. Ready steps are returned in
        declaration order.
        """
        changed = True
        ready: list[int] = []
        while changed:
            changed = False
            ready = []
            for idx in list(pending):
                node = plan.nodes[idx]
                required = [plan.nodes[r].step_id for r in node.requires]
                failed = next((r for r in required if r in store and not store[r].success), None)
                if failed is not None:
                    pending.remove(idx)
                    error = f"Dependency '{failed}' did not succeed ({store[failed].status})"
                    self.logger.info(f"   ⤼ {node.step_id}: skipped, {error}")
                    store.publish(
                        StepResult.not_run(
                            node.step_id,
                            StepStatus.SKIPPED,
                            error,
                            StepErrorKind.DEPENDENCY_FAILED,
                        )
                    )
                    self._emit(
                        ActivityAction.STEP_SKIPPED,
                        node.step_id,
                        context,
                        dependency=failed,
                        reason=error,
                    )
                    changed = True
                elif all(store.succeeded(r) for r in required):
                    ready.append(idx)
        return ready

    def _check_condition(
        self,
        plan: ExecutionPlan,
        step: StepDefinition,
        store: StepOutputStore,
        context: ExecutionContext,
    ) -> StepResult | None:
        """Evaluate a step's condition; return its skipped result when it must not run."""
        outcome = self.conditions.evaluate_step(step, store, context, plan.definition)
        self._emit(
            ActivityAction.STEP_CONDITION_EVALUATED,
            step.id,
            context,
            condition=outcome.condition,
            should_execute=outcome.should_execute,
            error=outcome.error,
        )
        if outcome.should_execute:
            return None
        self.logger.info(f"   ⤼ {step.id}: skipped, {outcome.skip_reason}")
        self._emit(
            ActivityAction.STEP_SKIPPED,
            step.id,
            context,
            condition=outcome.condition,
            reason=outcome.skip_reason,
        )
        return StepResult.condition_skipped(step.id, outcome.skip_reason)

    def _cancel_pending(
        self,
        plan: ExecutionPlan,
        pending: list[int],
        store: StepOutputStore,
        context: ExecutionContext,
        stop: StopSignal,
    ) -> int:
        """Cancel every pending step. Returns how many were cancelled by the timeout."""
        if not pending:
            return 0
        timed_out = stop.aborted.is_set()
        if timed_out:
            reason = "Flow timed out before the step started"
        else:
            reason = f"Flow stopped after step '{stop.source}' failed (fail-fast)"
        for idx in pending:
            step_id = plan.nodes[idx].step_id
            store.publish(
                StepResult.not_run(step_id, StepStatus.CANCELLED, reason, StepErrorKind.CANCELLED)
            )
            self._emit(ActivityAction.STEP_CANCELLED, step_id, context, reason=reason)
        self.logger.info(f"   ⊘ Cancelled {len(pending)} pending step(s): {stop.reason}")
        cancelled = len(pending)
        pending.clear()
        return cancelled if timed_out else 0

    async def _abort_running(
        self,
        plan: ExecutionPlan,
        running: dict[asyncio.Task, int],
        dispatched_at: dict[int, datetime],
        store: StepOutputStore,
        context: ExecutionContext,
        stop: StopSignal,
    ) -> int:
        """
        Cancel in-flight step tasks after a timeout and record them.

        Returns how many steps were cut short; tasks that had already
        finished keep their own result.
        """
        for task in running:
            task.cancel()
        await asyncio.gather(*running, return_exceptions=True)

        interrupted = 0
        for task, idx in running.items():
            step_id = plan.nodes[idx].step_id
            if not task.cancelled() and task.exception() is None:
                store.publish(task.result())
                continue
            error = f"{type(stop.error).__name__}: {stop.error}" if stop.error else "Flow timed out"
            error = f"{error} while the step was running"
            store.publish(
                StepResult.not_run(
                    step_id,
                    StepStatus.CANCELLED,
                    error,
                    StepErrorKind.TIMEOUT,
                    attempts=1,
                    started_at=dispatched_at.get(idx),
                )
            )
            self._emit(ActivityAction.STEP_CANCELLED, step_id, context, reason=error)
            interrupted += 1
        running.clear()
        return interrupted

    async def _run_step(
        self,
        semaphore: asyncio.Semaphore,
        step: StepDefinition,
        resolved_input: str,
        context: ExecutionContext,
        stop: StopSignal,
    ) -> StepResult:
        started_at = datetime.now()
        async with semaphore:
            try:
                return await self.executor.run(step, resolved_input, context, cancel=stop.event)
            except Exception as e:
                self.logger.exception(f"   ✗ {step.id}: executor crashed")
                return StepResult(
                    step_id=step.id,
                    success=False,
                    status=StepStatus.FAILED,
                    started_at=started_at,
                    completed_at=datetime.now(),
                    error=f"{type(e).__name__}: {e}",
                    error_kind=StepErrorKind.STEP_EXECUTION,
                    attempts=1,
                )

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
