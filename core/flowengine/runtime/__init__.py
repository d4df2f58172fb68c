"""Runtime event stream: activity events and sinks."""

from flowengine.runtime.activity import (
    ActivityAction,
    ActivityEvent,
    ActivityJournal,
    ActivityLogger,
    LoggingActivityLogger,
    NullActivityLogger,
    safe_log,
)

__all__ = [
    "ActivityAction",
    "ActivityEvent",
    "ActivityJournal",
    "ActivityLogger",
    "LoggingActivityLogger",
    "NullActivityLogger",
    "safe_log",
]
