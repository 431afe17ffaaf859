"""Chat-completions client for OpenAI and compatible servers.

Talks to ``POST {api_base_url}/chat/completions`` with plain httpx, so Azure
deployments, Ollama, vLLM and similar servers work by changing the base URL.

    client = OpenAIChatClient(api_key="sk-...", model="gpt-4o-mini")
    answer = await client.complete("Write a haiku about Rust")

A 429 answer raises ``LLMRateLimitError`` with the ``Retry-After`` value;
retrying is left to ``RetryingLLMClient``.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from triggerflow.exceptions import LLMRateLimitError, LLMRequestError
from triggerflow.llm.client import LLMClient, LLMResponse
from triggerflow.logging import get_logger

log = get_logger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"
COMPLETIONS_PATH = "chat/completions"


def retry_after_seconds(header: str | None) -> float | None:
    """Parse a delta-seconds ``Retry-After`` header; HTTP dates are ignored."""
    if header is None or not header.strip():
        return None
    try:
        return max(0.0, float(header))
    except ValueError:
        return None


def _first_message_text(payload: dict[str, Any]) -> str:
    for choice in payload.get("choices") or []:
        message = choice.get("message") or {}
        return message.get("content") or ""
    return ""


class OpenAIChatClient(LLMClient):
    """One user message in, the first choice's text out."""

    def __init__(
        self,
        *,
        api_key: str = "",
        api_base_url: str = "",
        model: str = "gpt-4o-mini",
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1024,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (api_base_url or OPENAI_API_BASE).rstrip("/") + "/"
        self._model = model
        self._system_prompt = system_prompt
        self._sampling = {"temperature": temperature, "max_tokens": max_tokens}
        self._timeout = timeout
        self._transport = transport
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._session: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._model

    def _session_for_request(self) -> httpx.AsyncClient:
        if self._session is None or self._session.is_closed:
            self._session = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._session

    def _messages(self, prompt: str) -> list[dict[str, str]]:
        system = [{"role": "system", "content": self._system_prompt}] if self._system_prompt else []
        return [*system, {"role": "user", "content": prompt}]

    async def complete(self, prompt: str) -> LLMResponse:
        body = {"model": self._model, "messages": self._messages(prompt), **self._sampling}
        started = time.perf_counter()
        reply = await self._session_for_request().post(COMPLETIONS_PATH, json=body)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

        if reply.status_code == 429:
            wait = retry_after_seconds(reply.headers.get("retry-after"))
            log.warning("llm_rate_limited", model=self._model, retry_after=wait)
            raise LLMRateLimitError(reply.text, retry_after=wait)
        if reply.is_error:
            log.warning("llm_request_failed", model=self._model, status=reply.status_code)
            raise LLMRequestError(reply.status_code, reply.text)

        payload = reply.json()
        usage = payload.get("usage") or {}
        return LLMResponse(
            content=_first_message_text(payload),
            model=payload.get("model") or self._model,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=elapsed_ms,
            raw=payload,
        )

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.is_closed:
            await session.aclose()
