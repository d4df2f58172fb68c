"""Agent invoker abstraction - the engine's only way of calling a capability.

The engine treats an invoker as an opaque, possibly slow, possibly failing
async call. It knows nothing about prompts or model selection.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from flowengine.flow.definition import ExecutionContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentResponse:
    """Response from an agent call.

    An invoker may report failure either by raising or by returning a
    response with ``error`` set.
    """

    content: str
    raw: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AgentInvoker(ABC):
    """
    Abstract agent invoker - plug in any capability backend.

    Implementations should handle:
    - Prompt construction for the agent
    - Model selection
    - Transport errors (raise, or return AgentResponse(error=...))
    """

    @abstractmethod
    async def invoke(
        self,
        agent_id: str,
        resolved_input: str,
        context: "ExecutionContext",
    ) -> AgentResponse:
        """
        Run one agent call.

        Args:
            agent_id: Capability identifier from the step definition
            resolved_input: Step input after aggregation and transform
            context: The flow run's request context

        Returns:
            AgentResponse with the agent's output
        """


AgentFunction = Callable[[str, "ExecutionContext"], Awaitable[AgentResponse | str]]


class FunctionInvoker(AgentInvoker):
    """
    Invoker backed by a registry of async functions, one per agent id.

    Example:
        async def summarize(text, context):
            return text[:100]

        invoker = FunctionInvoker({"summarizer": summarize})
    """

    def __init__(self, agents: dict[str, AgentFunction] | None = None):
        self._agents: dict[str, AgentFunction] = dict(agents or {})

    def register(self, agent_id: str, func: AgentFunction) -> None:
        """Register a function as an agent."""
        self._agents[agent_id] = func

    async def invoke(
        self,
        agent_id: str,
        resolved_input: str,
        context: "ExecutionContext",
    ) -> AgentResponse:
        func = self._agents.get(agent_id)
        if func is None:
            raise LookupError(f"No agent registered for '{agent_id}'")
        result = await func(resolved_input, context)
        if isinstance(result, AgentResponse):
            return result
        return AgentResponse(content=str(result))


@dataclass
class MockCall:
    """One recorded MockAgentInvoker call."""

    agent_id: str
    resolved_input: str
    trace_id: str


@dataclass
class MockAgentInvoker(AgentInvoker):
    """
    Deterministic invoker for tests and dry runs.

    Strategies per agent id:
    - responses: fixed response text
    - scripted: responses returned in sequence (an Exception entry is raised)
    - failing: agents that always raise
    - delay_ms: simulated latency for every call
    Agents with no strategy echo their input.
    """

    responses: dict[str, str] = field(default_factory=dict)
    scripted: dict[str, list[str | Exception]] = field(default_factory=dict)
    failing: dict[str, str] = field(default_factory=dict)
    delay_ms: int = 0
    calls: list[MockCall] = field(default_factory=list)

    async def invoke(
        self,
        agent_id: str,
        resolved_input: str,
        context: "ExecutionContext",
    ) -> AgentResponse:
        self.calls.append(MockCall(agent_id, resolved_input, context.trace_id))
        if self.delay_ms:
            await asyncio.sleep(self.delay_ms / 1000)

        if agent_id in self.failing:
            raise RuntimeError(self.failing[agent_id])

        script = self.scripted.get(agent_id)
        if script:
            item = script.pop(0)
            if isinstance(item, Exception):
                raise item
            return AgentResponse(content=item, raw={"agent": agent_id, "mock": "scripted"})

        if agent_id in self.responses:
            return AgentResponse(
                content=self.responses[agent_id], raw={"agent": agent_id, "mock": "fixed"}
            )

        logger.debug(f"Mock agent '{agent_id}' echoing {len(resolved_input)} chars")
        return AgentResponse(
            content=f"[{agent_id}] {resolved_input}", raw={"agent": agent_id, "mock": "echo"}
        )

    def calls_for(self, agent_id: str) -> list[MockCall]:
        return [c for c in self.calls if c.agent_id == agent_id]
