"""Action capability — the sink that acts on a rendered prompt.

The agent knows exactly one entry point: ``await action.invoke(prompt)``.
Whatever happens behind it (an LLM with tools, a webhook, a file writer) is
the implementation's business; the result is opaque to the agent and any
exception is treated as a failed invocation.

Implementations:
  - CallableAction — wraps a plain ``async def fn(prompt)``
  - LLMAction      — completes the prompt with an LLMClient (triggerflow.llm)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable


class ActionCapability(ABC):
    """Consumes a rendered prompt and performs side effects."""

    @abstractmethod
    async def invoke(self, prompt: str) -> Any:
        """Act on *prompt* and return an opaque result."""


class CallableAction(ActionCapability):
    """Adapts an async callable to the ActionCapability interface."""

    def __init__(self, fn: Callable[[str], Awaitable[Any]]) -> None:
        self._fn = fn

    async def invoke(self, prompt: str) -> Any:
        return await self._fn(prompt)
