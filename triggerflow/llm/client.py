"""LLM client protocol and the action capability built on it.

Defines the abstract interface an LLM provider implements to back an agent.
The agent itself never sees it: ``LLMAction`` adapts any client to the
one-method ``ActionCapability`` interface.

Implementations:
  - NullLLMClient      — no network, echoes the prompt
  - OpenAIChatClient   — OpenAI-compatible HTTP API (llm/openai.py)
  - RetryingLLMClient  — decorator adding rate-limit retries (llm/retry.py)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from triggerflow.action import ActionCapability


@dataclass
class LLMResponse:
    """What a provider returned for one prompt."""

    content: str
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMClient(ABC):
    """Abstract LLM client.  Implementations must be async-safe."""

    @abstractmethod
    async def complete(self, prompt: str) -> LLMResponse:
        """Send *prompt* and return the model's answer.

        Raises:
            LLMError: The provider rejected or failed the request.
        """

    async def close(self) -> None:
        """Close network sessions held by the client."""


class NullLLMClient(LLMClient):
    """No-op client for dry runs: answers with the prompt it received."""

    async def complete(self, prompt: str) -> LLMResponse:
        return LLMResponse(content=prompt, model="null")


class LLMAction(ActionCapability):
    """Action capability that sends the rendered prompt to an LLM.

    Tool calling, if any, is the client's concern; the result handed back to
    the agent is the response text.
    """

    def __init__(self, client: LLMClient) -> None:
        self._client = client

    @property
    def client(self) -> LLMClient:
        return self._client

    async def invoke(self, prompt: str) -> str:
        response = await self._client.complete(prompt)
        return response.content

    async def close(self) -> None:
        await self._client.close()
