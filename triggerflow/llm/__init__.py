"""triggerflow — LLM-backed action capability.

llm/
  client.py   — LLMClient ABC, NullLLMClient, LLMAction
  openai.py   — OpenAIChatClient (httpx)
  retry.py    — RetryingLLMClient decorator
  factory.py  — create_llm_client(LLMConfig)
"""

from triggerflow.llm.client import LLMAction, LLMClient, LLMResponse, NullLLMClient
from triggerflow.llm.factory import create_llm_client, with_retry
from triggerflow.llm.openai import OpenAIChatClient
from triggerflow.llm.retry import RetryingLLMClient

__all__ = [
    "LLMAction",
    "LLMClient",
    "LLMResponse",
    "NullLLMClient",
    "OpenAIChatClient",
    "RetryingLLMClient",
    "create_llm_client",
    "with_retry",
]
