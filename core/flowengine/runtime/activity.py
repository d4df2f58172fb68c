"""
Activity logging - the engine's event stream for journals and dashboards.

The engine emits one ActivityEvent per lifecycle transition (flow started,
step started, step retrying, ...) to any sink implementing ActivityLogger.
Sinks are synchronous and must be cheap; a sink that raises is logged and
ignored, never allowed to affect the flow run.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class ActivityAction(StrEnum):
    """Actions emitted by the flow engine."""

    # Validation
    FLOW_VALIDATING = "flow.validating"
    FLOW_VALIDATED = "flow.validated"
    FLOW_VALIDATION_FAILED = "flow.validation.failed"

    # Flow lifecycle
    FLOW_STARTED = "flow.started"
    FLOW_COMPLETED = "flow.completed"
    FLOW_FAILED = "flow.failed"
    FLOW_TIMED_OUT = "flow.timed_out"

    # Step lifecycle
    STEP_CONDITION_EVALUATED = "flow.step.condition.evaluated"
    STEP_STARTED = "flow.step.started"
    STEP_RETRYING = "flow.step.retrying"
    STEP_COMPLETED = "flow.step.completed"
    STEP_FAILED = "flow.step.failed"
    STEP_SKIPPED = "flow.step.skipped"
    STEP_CANCELLED = "flow.step.cancelled"


@dataclass
class ActivityEvent:
    """An entry in the activity journal."""

    action: str
    target: str
    payload: dict[str, Any] = field(default_factory=dict)
    trace_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "action": str(self.action),
            "target": self.target,
            "payload": self.payload,
            "trace_id": self.trace_id,
            "timestamp": self.timestamp.isoformat(),
        }


@runtime_checkable
class ActivityLogger(Protocol):
    """Any sink the engine can write activity events to."""

    def log(self, event: ActivityEvent) -> None: ...


def safe_log(sink: ActivityLogger | None, event: ActivityEvent) -> None:
    """Write to a sink without ever letting a sink failure escape."""
    if sink is None:
        return
    try:
        sink.log(event)
    except Exception as e:
        logger.warning(f"Activity sink failed for {event.action}: {e}")


class NullActivityLogger:
    """Discards all events."""

    def log(self, event: ActivityEvent) -> None:
        return None


class LoggingActivityLogger:
    """Writes activity events through the standard logging module."""

    def __init__(self, name: str = "flowengine.activity", level: int = logging.INFO):
        self._logger = logging.getLogger(name)
        self._level = level

    def log(self, event: ActivityEvent) -> None:
        level = logging.WARNING if str(event.action).endswith(("failed", "timed_out")) else self._level
        details = ", ".join(f"{k}={v}" for k, v in event.payload.items() if v is not None)
        self._logger.log(
            level,
            f"{event.action} {event.target}" + (f" ({details})" if details else ""),
            extra={"event": str(event.action)},
        )


EventHandler = Callable[[ActivityEvent], None]


@dataclass
class Subscription:
    """A subscription to activity events."""

    id: str
    actions: set[str]
    handler: EventHandler
    filter_target: str | None = None  # Only receive events for this target
    filter_trace: str | None = None  # Only receive events for this trace


class ActivityJournal:
    """
    In-memory activity journal with subscriptions.

    Features:
    - Bounded event history for inspection and tests
    - Action-based subscriptions
    - Target/trace filtering

    Example:
        journal = ActivityJournal()

        def on_step_failed(event: ActivityEvent):
            print(f"{event.target} failed: {event.payload['error']}")

        journal.subscribe(actions=[ActivityAction.STEP_FAILED], handler=on_step_failed)
        runner = FlowRunner(invoker, activity_logger=journal)
    """

    def __init__(self, max_history: int = 1000):
        """
        Initialize the journal.

        Args:
            max_history: Maximum events to keep in history
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[ActivityEvent] = []
        self._max_history = max_history
        self._subscription_counter = 0

    def subscribe(
        self,
        actions: list[str],
        handler: EventHandler,
        filter_target: str | None = None,
        filter_trace: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            actions: Actions to receive
            handler: Function called with each matching event
            filter_target: Only receive events for this target
            filter_trace: Only receive events for this trace id

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            actions={str(a) for a in actions},
            handler=handler,
            filter_target=filter_target,
            filter_trace=filter_trace,
        )
        logger.debug(f"Subscription {sub_id} registered for {actions}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    def log(self, event: ActivityEvent) -> None:
        """Record an event and notify matching subscribers."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        for subscription in list(self._subscriptions.values()):
            if not self._matches(subscription, event):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.error(f"Handler error for {event.action}: {e}")

    def _matches(self, subscription: Subscription, event: ActivityEvent) -> bool:
        if str(event.action) not in subscription.actions:
            return False
        if subscription.filter_target and subscription.filter_target != event.target:
            return False
        if subscription.filter_trace and subscription.filter_trace != event.trace_id:
            return False
        return True

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        action: str | None = None,
        target: str | None = None,
        trace_id: str | None = None,
        limit: int | None = None,
    ) -> list[ActivityEvent]:
        """
        Get event history with optional filtering.

        Returns:
            Matching events in emission order
        """
        events = self._event_history
        if action:
            events = [e for e in events if str(e.action) == str(action)]
        if target:
            events = [e for e in events if e.target == target]
        if trace_id:
            events = [e for e in events if e.trace_id == trace_id]
        return events[:limit] if limit is not None else list(events)

    def actions(self) -> list[str]:
        """Emitted action names, in order."""
        return [str(e.action) for e in self._event_history]

    def get_stats(self) -> dict:
        """Get journal statistics."""
        action_counts: dict[str, int] = {}
        for event in self._event_history:
            key = str(event.action)
            action_counts[key] = action_counts.get(key, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_action": action_counts,
        }

    def clear(self) -> None:
        self._event_history.clear()
