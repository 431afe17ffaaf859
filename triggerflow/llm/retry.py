"""Retry decorator for LLM clients.

Wraps any ``LLMClient`` and retries failed completions according to a
``RetryConfig``:

- By default only rate-limit failures are retried: ``LLMRateLimitError``,
  an ``LLMRequestError`` with status 429, or an error whose text is a JSON
  body with ``{"error": {"code": 429}}``.
- A delay supplied by the server wins over the backoff strategy: the
  ``Retry-After`` header, or a Google ``RetryInfo`` detail such as
  ``{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "12s"}``.
- Otherwise the delay follows the strategy (fixed, exponential, or
  exponential with full jitter), capped at ``max_delay_seconds``.

``max_attempts`` counts retries after the first call, so ``max_attempts=3``
makes at most 4 calls.
"""

from __future__ import annotations

import asyncio
import json
import random
import re
from typing import Any, Awaitable, Callable

from triggerflow.config import RetryConfig, RetryStrategy
from triggerflow.exceptions import LLMRateLimitError, LLMRequestError
from triggerflow.llm.client import LLMClient, LLMResponse
from triggerflow.logging import get_logger

log = get_logger(__name__)

_GOOGLE_RETRY_INFO = "type.googleapis.com/google.rpc.RetryInfo"
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float | None:
    """Parse ``"12s"``, ``"1.5s"``, ``"500ms"``, ``"2m"`` into seconds."""
    match = _DURATION_RE.match(value)
    if match is None:
        return None
    return float(match.group(1)) * _UNIT_SECONDS[match.group(2)]


def _error_body(exc: Exception) -> dict[str, Any] | None:
    text = exc.body if isinstance(exc, LLMRequestError) else str(exc)
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, LLMRateLimitError):
        return True
    if isinstance(exc, LLMRequestError) and exc.status_code == 429:
        return True
    body = _error_body(exc)
    if body is None or not isinstance(body.get("error"), dict):
        return False
    return body["error"].get("code") == 429


def server_retry_delay(exc: Exception) -> float | None:
    """Return the delay the server asked for, if any."""
    if isinstance(exc, LLMRateLimitError) and exc.retry_after is not None:
        return exc.retry_after
    body = _error_body(exc)
    if body is None or not isinstance(body.get("error"), dict):
        return None
    for detail in body["error"].get("details") or []:
        if isinstance(detail, dict) and detail.get("@type") == _GOOGLE_RETRY_INFO:
            raw = detail.get("retryDelay")
            if isinstance(raw, str):
                return parse_duration(raw)
    return None


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before retry number ``attempt + 1`` (attempt counts from 0)."""
    if config.strategy is RetryStrategy.FIXED:
        delay = config.base_delay_seconds
    else:
        delay = config.base_delay_seconds * (2**attempt)
    delay = min(delay, config.max_delay_seconds)
    if config.strategy is RetryStrategy.EXPONENTIAL_JITTER:
        delay = random.uniform(0.0, delay)
    return delay


class RetryingLLMClient(LLMClient):
    """Decorator that retries a wrapped client's failed completions."""

    def __init__(
        self,
        client: LLMClient,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._config = config or RetryConfig()
        self._sleep = sleep

    @property
    def wrapped(self) -> LLMClient:
        return self._client

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _should_retry(self, exc: Exception) -> bool:
        if self._config.only_retry_rate_limits:
            return is_rate_limit_error(exc)
        return True

    async def complete(self, prompt: str) -> LLMResponse:
        attempt = 0
        while True:
            try:
                return await self._client.complete(prompt)
            except Exception as exc:
                if attempt >= self._config.max_attempts or not self._should_retry(exc):
                    raise
                delay = server_retry_delay(exc)
                if delay is None:
                    delay = backoff_delay(self._config, attempt)
                attempt += 1
                log.warning(
                    "llm_retry",
                    attempt=attempt,
                    max_attempts=self._config.max_attempts,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                await self._sleep(delay)

    async def close(self) -> None:
        await self._client.close()
