"""triggerflow — Configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/triggerflow/config.yaml
    3. User config:   ~/.triggerflow/config.yaml
    4. An explicit ``--config`` file
    5. Environment variables prefixed with TRIGGERFLOW_
       (nested keys use ``__``, e.g. TRIGGERFLOW_AGENT__DRAIN_TIMEOUT_SECONDS)

Files are merged per top-level section: a later file that defines ``agent:``
replaces the whole ``agent`` block of an earlier one.  Environment variables
override single keys on top of the merged files.  Keyword arguments passed to
``Settings(...)`` rank with the files, below the environment.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class DrainPolicy(str, Enum):
    """What the agent does with buffered events once shutdown is requested."""

    STOP = "stop"  # leave them unprocessed
    DISCARD = "discard"  # empty the channel and count them as discarded


class AgentConfig(BaseModel):
    """Coordinator core settings."""

    drain_timeout_seconds: Annotated[float, Field(ge=0.0)] = Field(
        default=10.0,
        description="Maximum seconds to wait for in-flight invocations after shutdown.",
    )
    channel_capacity: Annotated[int, Field(ge=0)] = Field(
        default=100,
        description="Event channel capacity. 0 = unbounded.",
    )
    send_timeout_seconds: Annotated[float, Field(gt=0.0)] = Field(
        default=5.0,
        description="How long a trigger blocks on a full channel before ChannelFullError.",
    )
    trigger_join_timeout_seconds: Annotated[float, Field(ge=0.0)] = Field(
        default=5.0,
        description="Maximum seconds to wait for trigger tasks to observe shutdown.",
    )
    drain_policy: DrainPolicy = DrainPolicy.STOP
    strict_templates: bool = Field(
        default=True,
        description="Unresolved template paths raise instead of rendering as ''.",
    )


class RetryStrategy(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_JITTER = "exponential_jitter"


class RetryConfig(BaseModel):
    """Retry policy of the LLM action adapter (never used by the agent core)."""

    max_attempts: Annotated[int, Field(ge=0, le=20)] = Field(
        default=3,
        description="Retries after the first call. 0 disables retrying.",
    )
    base_delay_seconds: Annotated[float, Field(ge=0.0)] = 1.0
    max_delay_seconds: Annotated[float, Field(ge=0.0)] = 30.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_JITTER
    only_retry_rate_limits: bool = Field(
        default=True,
        description="Retry only HTTP 429 responses. False retries every error.",
    )

    @classmethod
    def disabled(cls) -> "RetryConfig":
        return cls(max_attempts=0, base_delay_seconds=0.0, strategy=RetryStrategy.FIXED)

    @classmethod
    def aggressive(cls) -> "RetryConfig":
        return cls(max_attempts=5, base_delay_seconds=0.5)

    @classmethod
    def conservative(cls) -> "RetryConfig":
        return cls(max_attempts=2, base_delay_seconds=2.0, strategy=RetryStrategy.EXPONENTIAL)

    def retry_all_errors(self) -> "RetryConfig":
        return self.model_copy(update={"only_retry_rate_limits": False})


class LLMConfig(BaseModel):
    """LLM backing the default action capability."""

    provider: Literal["null", "openai"] = Field(
        default="null",
        description="'null' echoes prompts without network access.",
    )
    model: str = "gpt-4o-mini"
    api_key: str | None = Field(
        default=None,
        description="API key. Also settable via TRIGGERFLOW_LLM__API_KEY.",
    )
    api_base_url: str | None = Field(
        default=None,
        description="Custom API base URL (proxies, Azure, self-hosted models).",
    )
    timeout_seconds: Annotated[float, Field(gt=0.0, le=600.0)] = 60.0
    temperature: Annotated[float, Field(ge=0.0, le=2.0)] = 0.7
    max_tokens: Annotated[int, Field(ge=1)] = 1024
    system_prompt: str = ""
    retry: RetryConfig = Field(default_factory=RetryConfig)


class EventsConfig(BaseModel):
    log_file: Path | None = Field(
        default=None,
        description="NDJSON file receiving agent events. None = no sink.",
    )


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

SEARCH_PATH: tuple[Path, ...] = (
    Path("/etc/triggerflow/config.yaml"),
    Path("~/.triggerflow/config.yaml"),
)


def _read_yaml(path: Path) -> dict[str, Any]:
    import yaml  # only needed when a config file exists

    with path.open(encoding="utf-8") as fh:
        content = yaml.safe_load(fh)
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(content).__name__}")
    return content


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TRIGGERFLOW_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    agent: AgentConfig = Field(default_factory=AgentConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # First source wins: the environment beats YAML data passed as kwargs.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Merge the YAML files of the search path and *config_file*.

        Environment variables still take precedence over every file.
        """
        merged: dict[str, Any] = {}
        paths = [p.expanduser() for p in SEARCH_PATH]
        if config_file is not None:
            paths.append(config_file)
        for path in paths:
            if path.is_file():
                merged.update(_read_yaml(path))
        return cls(**merged)


_current: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _current
    if _current is None:
        _current = Settings.load()
    return _current


def override_settings(settings: Settings) -> None:
    """Install *settings* as the process-wide instance (tests, embedding)."""
    global _current
    _current = settings
