"""Builds the configured LLM client, decorated with retries when enabled."""

from __future__ import annotations

from triggerflow.config import LLMConfig, RetryConfig
from triggerflow.llm.client import LLMClient, NullLLMClient
from triggerflow.llm.openai import OpenAIChatClient
from triggerflow.llm.retry import RetryingLLMClient
from triggerflow.logging import get_logger

log = get_logger(__name__)


def with_retry(client: LLMClient, retry: RetryConfig | None) -> LLMClient:
    """Wrap *client* in ``RetryingLLMClient`` unless retrying is disabled."""
    if retry is None or retry.max_attempts == 0:
        log.debug("llm_retry_disabled")
        return client
    log.debug(
        "llm_retry_enabled",
        max_attempts=retry.max_attempts,
        base_delay=retry.base_delay_seconds,
        strategy=retry.strategy.value,
        only_rate_limits=retry.only_retry_rate_limits,
    )
    return RetryingLLMClient(client, retry)


def create_llm_client(config: LLMConfig) -> LLMClient:
    """Instantiate the provider named in *config*."""
    if config.provider == "null":
        base: LLMClient = NullLLMClient()
    elif config.provider == "openai":
        base = OpenAIChatClient(
            api_key=config.api_key or "",
            api_base_url=config.api_base_url or "",
            model=config.model,
            system_prompt=config.system_prompt,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout_seconds,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {config.provider!r}")
    log.info("llm_client_created", provider=config.provider, model=config.model)
    return with_retry(base, config.retry)
