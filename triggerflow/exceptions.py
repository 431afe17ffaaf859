"""triggerflow — Exception hierarchy.

All exceptions raised by the framework inherit from TriggerFlowError so that
callers can catch the full family with a single except clause when needed.

Hierarchy:
    TriggerFlowError
    ├── ChannelError
    │   ├── ChannelClosedError
    │   └── ChannelFullError
    ├── TemplateError
    │   ├── TemplateSyntaxError
    │   └── TemplateRenderError
    ├── AgentError
    │   ├── AgentBuildError
    │   └── AgentStateError
    ├── TriggerError
    │   └── TriggerLaunchError
    └── LLMError
        ├── LLMRequestError
        └── LLMRateLimitError
"""

from __future__ import annotations

from typing import Any


class TriggerFlowError(Exception):
    """Base exception for all triggerflow errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Event channel
# ---------------------------------------------------------------------------


class ChannelError(TriggerFlowError):
    """Base for errors raised to producers of the shared event channel."""


class ChannelClosedError(ChannelError):
    """The consumer side of the channel is gone.  The producer must stop."""

    def __init__(self, message: str = "Event channel is closed") -> None:
        super().__init__(message)


class ChannelFullError(ChannelError):
    """The bounded channel stayed full for longer than the send timeout."""

    def __init__(self, capacity: int, timeout_seconds: float) -> None:
        super().__init__(
            f"Event channel full (capacity={capacity}) for {timeout_seconds}s",
            context={"capacity": capacity, "timeout_seconds": timeout_seconds},
        )
        self.capacity = capacity
        self.timeout_seconds = timeout_seconds


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TemplateError(TriggerFlowError):
    """Base for prompt template errors."""


class TemplateSyntaxError(TemplateError):
    """The template string itself is malformed."""

    def __init__(self, template: str, reason: str) -> None:
        super().__init__(
            f"Invalid template: {reason}",
            context={"template": template, "reason": reason},
        )
        self.template = template
        self.reason = reason


class TemplateRenderError(TemplateError):
    """A ``{{path}}`` expression could not be resolved against the context."""

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(
            f"Cannot render '{{{{{expression}}}}}': {reason}",
            context={"expression": expression, "reason": reason},
        )
        self.expression = expression
        self.reason = reason


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class AgentError(TriggerFlowError):
    """Base for coordinator errors."""


class AgentBuildError(AgentError):
    """The builder is missing a required field or holds an invalid one."""


class AgentStateError(AgentError):
    """An operation was called in a state that does not allow it."""

    def __init__(self, operation: str, state: str) -> None:
        super().__init__(
            f"Cannot {operation} while agent is {state}",
            context={"operation": operation, "state": state},
        )
        self.operation = operation
        self.state = state


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TriggerError(TriggerFlowError):
    """Base for trigger errors."""


class TriggerLaunchError(TriggerError):
    """A trigger could not be launched."""

    def __init__(self, trigger_name: str, reason: str) -> None:
        super().__init__(
            f"Cannot launch trigger '{trigger_name}': {reason}",
            context={"trigger_name": trigger_name, "reason": reason},
        )
        self.trigger_name = trigger_name


# ---------------------------------------------------------------------------
# LLM adapters
# ---------------------------------------------------------------------------


class LLMError(TriggerFlowError):
    """Base for LLM client errors."""


class LLMRequestError(LLMError):
    """The provider answered with a non-success status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(
            f"LLM request failed with HTTP {status_code}",
            context={"status_code": status_code, "body": body[:500]},
        )
        self.status_code = status_code
        self.body = body


class LLMRateLimitError(LLMRequestError):
    """The provider rejected the request with HTTP 429."""

    def __init__(self, body: str = "", retry_after: float | None = None) -> None:
        super().__init__(429, body)
        self.retry_after = retry_after
        self.context["retry_after"] = retry_after
