"""AgentBuilder — incremental, validated construction of an Agent.

Usage::

    agent = (
        AgentBuilder()
        .with_action(LLMAction(client))
        .with_prompt_template("Write a haiku about {{name}}")
        .add_trigger(PollTrigger("Rust", interval_seconds=12, hot_start=True))
        .add_trigger(inbox_trigger, template="Summarise: {{verbatim payload}}")
        .with_shutdown_handler(SignalShutdown())
        .with_drain_timeout(10)
        .build()
    )

``build()`` fails fast with ``AgentBuildError`` on a missing action, a trigger
without any template, a malformed template, a trigger added twice or an
invalid setting.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from triggerflow.action import ActionCapability, CallableAction
from triggerflow.agent.core import Agent, TriggerBinding
from triggerflow.config import AgentConfig, DrainPolicy
from triggerflow.events.bus import EventBus
from triggerflow.exceptions import AgentBuildError, TemplateSyntaxError
from triggerflow.shutdown import ShutdownHandler
from triggerflow.template import TemplateRenderer
from triggerflow.triggers.base import Trigger


class AgentBuilder:
    """Collects the agent's parts field by field before a single build()."""

    def __init__(self, config: AgentConfig | None = None) -> None:
        self._config = config or AgentConfig()
        self._overrides: dict[str, Any] = {}
        self._triggers: list[tuple[Trigger, str | None]] = []
        self._action: ActionCapability | None = None
        self._default_template: str | None = None
        self._handler: ShutdownHandler | None = None
        self._bus: EventBus | None = None

    def with_action(
        self, action: ActionCapability | Callable[[str], Awaitable[Any]]
    ) -> "AgentBuilder":
        """Attach the action capability (required).  Async callables are wrapped."""
        if isinstance(action, ActionCapability):
            self._action = action
        elif callable(action):
            self._action = CallableAction(action)
        else:
            raise AgentBuildError(
                f"Action must be an ActionCapability or async callable, got {type(action).__name__}"
            )
        return self

    def add_trigger(self, trigger: Trigger, template: str | None = None) -> "AgentBuilder":
        """Register *trigger*; *template* overrides the default prompt template."""
        self._triggers.append((trigger, template))
        return self

    def with_prompt_template(self, template: str) -> "AgentBuilder":
        """Template for every trigger added without its own."""
        self._default_template = template
        return self

    def with_shutdown_handler(self, handler: ShutdownHandler) -> "AgentBuilder":
        self._handler = handler
        return self

    def with_event_bus(self, bus: EventBus) -> "AgentBuilder":
        self._bus = bus
        return self

    def with_config(self, config: AgentConfig) -> "AgentBuilder":
        """Replace the base configuration.  Explicit ``with_*`` settings still win."""
        self._config = config
        return self

    def with_drain_timeout(self, seconds: float) -> "AgentBuilder":
        self._overrides["drain_timeout_seconds"] = seconds
        return self

    def with_channel_capacity(self, capacity: int) -> "AgentBuilder":
        self._overrides["channel_capacity"] = capacity
        return self

    def with_send_timeout(self, seconds: float) -> "AgentBuilder":
        self._overrides["send_timeout_seconds"] = seconds
        return self

    def with_trigger_join_timeout(self, seconds: float) -> "AgentBuilder":
        self._overrides["trigger_join_timeout_seconds"] = seconds
        return self

    def with_drain_policy(self, policy: DrainPolicy | str) -> "AgentBuilder":
        self._overrides["drain_policy"] = policy
        return self

    def with_strict_templates(self, strict: bool) -> "AgentBuilder":
        self._overrides["strict_templates"] = strict
        return self

    def build(self) -> Agent:
        if self._action is None:
            raise AgentBuildError("An action capability is required: call with_action()")

        try:
            config = AgentConfig.model_validate({**self._config.model_dump(), **self._overrides})
        except ValidationError as exc:
            raise AgentBuildError(
                f"Invalid agent configuration: {exc.error_count()} error(s)",
                context={"errors": exc.errors(include_url=False)},
            ) from exc

        renderer = TemplateRenderer(strict=config.strict_templates)
        bindings: list[TriggerBinding] = []
        seen: set[int] = set()
        for trigger, template in self._triggers:
            if id(trigger) in seen:
                raise AgentBuildError(
                    f"Trigger '{trigger.name}' was added more than once",
                    context={"trigger_name": trigger.name},
                )
            seen.add(id(trigger))

            effective = template if template is not None else self._default_template
            if effective is None:
                raise AgentBuildError(
                    f"Trigger '{trigger.name}' has no template and no default prompt template is set",
                    context={"trigger_name": trigger.name},
                )
            try:
                renderer.validate(effective)
            except TemplateSyntaxError as exc:
                raise AgentBuildError(
                    f"Trigger '{trigger.name}': {exc.message}",
                    context={"trigger_name": trigger.name, **exc.context},
                ) from exc
            bindings.append(TriggerBinding(trigger, effective))

        return Agent(
            bindings,
            self._action,
            config=config,
            shutdown_handler=self._handler,
            event_bus=self._bus,
            renderer=renderer,
        )
