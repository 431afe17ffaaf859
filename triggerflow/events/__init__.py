"""triggerflow — Observability event sink."""

from triggerflow.events.bus import (
    TOPIC_ACTIONS,
    TOPIC_AGENT,
    TOPIC_ERRORS,
    EventBus,
    FanoutEventBus,
    LogEventBus,
    NullEventBus,
)

__all__ = [
    "TOPIC_ACTIONS",
    "TOPIC_AGENT",
    "TOPIC_ERRORS",
    "EventBus",
    "FanoutEventBus",
    "LogEventBus",
    "NullEventBus",
]
