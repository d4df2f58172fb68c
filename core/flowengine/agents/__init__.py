"""Agent invocation interface consumed by the flow engine."""

from flowengine.agents.invoker import (
    AgentFunction,
    AgentInvoker,
    AgentResponse,
    FunctionInvoker,
    MockAgentInvoker,
    MockCall,
)

__all__ = [
    "AgentInvoker",
    "AgentResponse",
    "AgentFunction",
    "FunctionInvoker",
    "MockAgentInvoker",
    "MockCall",
]
