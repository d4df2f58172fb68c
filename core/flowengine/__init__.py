"""
flowengine - declarative multi-agent flow execution.

A flow is a DAG of steps, each calling one agent. The engine validates the
graph, runs ready steps concurrently under a parallelism cap, feeds earlier
outputs into later steps, retries failures, and enforces fail-fast and
timeout policies.
"""

from flowengine.agents import AgentInvoker, AgentResponse, FunctionInvoker, MockAgentInvoker
from flowengine.flow import (
    ExecutionContext,
    FlowDefinition,
    FlowLoader,
    FlowResult,
    FlowRunner,
    FlowStatus,
    FlowValidationError,
    StepResult,
    StepStatus,
)
from flowengine.runtime import ActivityAction, ActivityEvent, ActivityJournal

__version__ = "0.1.0"

__all__ = [
    "FlowRunner",
    "FlowDefinition",
    "FlowLoader",
    "ExecutionContext",
    "FlowResult",
    "FlowStatus",
    "StepResult",
    "StepStatus",
    "FlowValidationError",
    "AgentInvoker",
    "AgentResponse",
    "FunctionInvoker",
    "MockAgentInvoker",
    "ActivityAction",
    "ActivityEvent",
    "ActivityJournal",
]
