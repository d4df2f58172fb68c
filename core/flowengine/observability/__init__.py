"""
Observability: trace context propagation and structured logging.

- Trace context propagated via ContextVar (trace_id, flow_run_id, flow_id, step_id)
- Structured JSON logging for production
- Human-readable logging for development
"""

from flowengine.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
