"""Agent — the coordinator core.

The agent owns the trigger bindings, the shared event channel, the shutdown
coordinator and the consumption loop.  It:

1. **Launches** every trigger with the shared emitter and shutdown observer.
2. **Consumes** the channel in a single loop, in arrival order.
3. **Renders** each event through the template bound to its trigger.
4. **Dispatches** the prompt to the action capability as a tracked task, so a
   slow invocation never stalls the loop.
5. **Drains** in-flight invocations after shutdown, bounded by a timeout.
6. **Reports** every failure to the log and the event bus without stopping.

State machine::

    BUILDING → RUNNING → DRAINING → STOPPED

Processing flow::

    Trigger task ──emit──► EventChannel ──receive──► _event_loop()
                                                        ↓
                                         TemplateRenderer.render()
                                                        ↓
                                   InFlightTracker.spawn(_invoke())
                                                        ↓
                                          ActionCapability.invoke()
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from triggerflow.action import ActionCapability
from triggerflow.agent.channel import Envelope, EventChannel
from triggerflow.agent.inflight import InFlightTracker
from triggerflow.config import AgentConfig, DrainPolicy
from triggerflow.events.bus import TOPIC_ACTIONS, TOPIC_AGENT, TOPIC_ERRORS, EventBus, NullEventBus
from triggerflow.exceptions import AgentStateError, TemplateError
from triggerflow.logging import get_logger, invocation_context
from triggerflow.shutdown import ShutdownCoordinator, ShutdownHandler
from triggerflow.template import TemplateRenderer
from triggerflow.triggers.base import BaseTrigger, Emitter, Trigger
from triggerflow.triggers.event import Event

log = get_logger(__name__)


class AgentState(str, Enum):
    """Lifecycle state of an Agent."""

    BUILDING = "building"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True)
class TriggerBinding:
    """A trigger and the prompt template used for its events."""

    trigger: Trigger
    template: str


@dataclass
class AgentStats:
    """Counters updated by the loop and the invocation tasks."""

    received_events: int = 0
    dispatched_events: int = 0
    render_failures: int = 0
    action_successes: int = 0
    action_failures: int = 0
    discarded_events: int = 0


@dataclass
class ShutdownReport:
    """Outcome of a run, produced when the agent reaches STOPPED."""

    reason: str | None
    residual_inflight: int
    unconsumed_events: int
    discarded_events: int
    processed_events: int
    render_failures: int
    action_successes: int
    action_failures: int
    duration_seconds: float
    unterminated_triggers: list[str] = field(default_factory=list)

    @property
    def drained(self) -> bool:
        """True when every started invocation finished before the timeout."""
        return self.residual_inflight == 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["drained"] = self.drained
        return data


class Agent:
    """Coordinates triggers, prompt rendering and action invocations.

    Build one with ``AgentBuilder``; then either::

        report = await agent.run()          # until a shutdown handler fires

    or drive it explicitly::

        await agent.start()
        ...
        agent.request_shutdown("done")
        report = await agent.wait()
    """

    def __init__(
        self,
        bindings: list[TriggerBinding],
        action: ActionCapability,
        *,
        config: AgentConfig | None = None,
        shutdown_handler: ShutdownHandler | None = None,
        event_bus: EventBus | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self._bindings = list(bindings)
        self._action = action
        self._config = config or AgentConfig()
        self._handler = shutdown_handler
        self._bus = event_bus or NullEventBus()
        self._renderer = renderer or TemplateRenderer(strict=self._config.strict_templates)

        self._shutdown = ShutdownCoordinator()
        self._inflight = InFlightTracker()
        self._stats = AgentStats()
        self._state = AgentState.BUILDING

        self._channel: EventChannel | None = None
        self._trigger_tasks: list[tuple[TriggerBinding, asyncio.Task[None]]] = []
        self._loop_task: asyncio.Task[ShutdownReport] | None = None
        self._handler_task: asyncio.Task[None] | None = None
        self._report: ShutdownReport | None = None
        self._bus_tasks: set[asyncio.Task[None]] = set()
        self._sequence = 0
        self._started_at = 0.0

    # ---------------------------------------------------------------------------
    # Introspection
    # ---------------------------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def inflight(self) -> int:
        """Number of action invocations currently running."""
        return self._inflight.count

    @property
    def stats(self) -> AgentStats:
        return self._stats

    @property
    def bindings(self) -> list[TriggerBinding]:
        return list(self._bindings)

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def report(self) -> ShutdownReport | None:
        return self._report

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set

    def trigger_errors(self) -> dict[str, str]:
        """Return ``{trigger_name: error}`` for every crashed BaseTrigger."""
        return {
            b.trigger.name: b.trigger.error
            for b in self._bindings
            if isinstance(b.trigger, BaseTrigger) and b.trigger.error is not None
        }

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def start(self) -> None:
        """Launch every trigger and the consumption loop."""
        if self._state is not AgentState.BUILDING:
            raise AgentStateError("start", self._state.value)
        self._started_at = time.monotonic()
        self._channel = EventChannel(
            capacity=self._config.channel_capacity,
            send_timeout=self._config.send_timeout_seconds,
        )
        self._state = AgentState.RUNNING

        stop = self._shutdown.observer()
        for index, binding in enumerate(self._bindings):
            try:
                task = binding.trigger.launch(self._make_emitter(index), stop)
            except Exception as exc:
                log.error("trigger_launch_failed", trigger_name=binding.trigger.name, error=str(exc))
                await self._publish(
                    TOPIC_ERRORS,
                    {"event": "trigger_launch_failed", "trigger_name": binding.trigger.name, "error": str(exc)},
                )
                continue
            self._trigger_tasks.append((binding, task))

        self._loop_task = asyncio.create_task(self._event_loop(), name="agent_event_loop")
        if self._handler is not None:
            self._handler_task = asyncio.create_task(self._watch_handler(), name="agent_shutdown_handler")

        log.info(
            "agent_started",
            trigger_count=len(self._bindings),
            launched_count=len(self._trigger_tasks),
            channel_capacity=self._config.channel_capacity,
        )
        await self._publish(
            TOPIC_AGENT,
            {
                "event": "agent_started",
                "trigger_count": len(self._bindings),
                "launched_count": len(self._trigger_tasks),
            },
        )

    def request_shutdown(self, reason: str = "requested") -> bool:
        """Raise the shutdown broadcast.  Only the first call has an effect."""
        return self._shutdown.request(reason)

    async def wait(self) -> ShutdownReport:
        """Wait for the agent to reach STOPPED and return its report."""
        if self._loop_task is None:
            raise AgentStateError("wait", self._state.value)
        return await asyncio.shield(self._loop_task)

    async def run(self) -> ShutdownReport:
        """Start the agent and wait until it has stopped."""
        await self.start()
        return await self.wait()

    async def __aenter__(self) -> "Agent":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.request_shutdown("context_exit")
        await self.wait()

    # ---------------------------------------------------------------------------
    # Consumption loop
    # ---------------------------------------------------------------------------

    def _make_emitter(self, index: int) -> Emitter:
        channel = self._channel
        assert channel is not None

        async def emit(event: Event) -> None:
            if not isinstance(event, Event):
                raise TypeError(f"Triggers must emit Event instances, got {type(event).__name__}")
            await channel.send(event, binding=index)

        return emit

    async def _event_loop(self) -> ShutdownReport:
        channel = self._channel
        assert channel is not None
        log.info("agent_event_loop_started")

        stop_wait = asyncio.ensure_future(self._shutdown.wait())
        receive: asyncio.Future[Envelope] | None = None
        try:
            while True:
                receive = asyncio.ensure_future(channel.receive())
                done, _ = await asyncio.wait(
                    {receive, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if stop_wait in done:
                    if receive.done() and not receive.cancelled():
                        # Dequeued in the same wake-up as the signal: not processed.
                        self._stats.discarded_events += 1
                        log.debug("event_dropped_at_shutdown", event_name=receive.result().event.name)
                    break
                await self._process(receive.result())
        finally:
            for waiter in (receive, stop_wait):
                if waiter is not None and not waiter.done():
                    waiter.cancel()

        return await self._drain()

    async def _process(self, envelope: Envelope) -> None:
        """Render one event and dispatch its invocation without awaiting it."""
        binding = self._bindings[envelope.binding]
        event = envelope.event
        trigger_name = binding.trigger.name
        self._stats.received_events += 1
        log.info("event_received", trigger_name=trigger_name, event_name=event.name)

        try:
            prompt = self._renderer.render(binding.template, event.to_context())
        except TemplateError as exc:
            self._stats.render_failures += 1
            log.error(
                "prompt_render_failed",
                trigger_name=trigger_name,
                event_name=event.name,
                error=str(exc),
            )
            await self._publish(
                TOPIC_ERRORS,
                {
                    "event": "prompt_render_failed",
                    "trigger_name": trigger_name,
                    "event_name": event.name,
                    "source_event": event.to_dict(),
                    "error": str(exc),
                },
            )
            return

        self._sequence += 1
        invocation_id = str(self._sequence)
        self._stats.dispatched_events += 1
        log.debug("prompt_rendered", trigger_name=trigger_name, invocation_id=invocation_id, prompt=prompt)
        self._inflight.spawn(
            self._invoke(trigger_name, event, prompt, invocation_id),
            name=f"invocation_{invocation_id}",
        )

    async def _invoke(self, trigger_name: str, event: Event, prompt: str, invocation_id: str) -> None:
        """Run one action invocation.  Never raises except on cancellation."""
        with invocation_context(trigger_name, invocation_id):
            await self._call_action(trigger_name, event, prompt, invocation_id)

    async def _call_action(self, trigger_name: str, event: Event, prompt: str, invocation_id: str) -> None:
        start = time.monotonic()
        try:
            result = await self._action.invoke(prompt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._stats.action_failures += 1
            log.error(
                "action_failed",
                event_name=event.name,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            self._publish_detached(
                TOPIC_ACTIONS,
                {
                    "event": "action_failed",
                    "trigger_name": trigger_name,
                    "invocation_id": invocation_id,
                    "source_event": event.to_dict(),
                    "error": str(exc),
                },
            )
            return

        latency_ms = round((time.monotonic() - start) * 1000, 1)
        self._stats.action_successes += 1
        log.info("action_completed", event_name=event.name, latency_ms=latency_ms)
        log.debug("action_result", result=str(result)[:500])
        self._publish_detached(
            TOPIC_ACTIONS,
            {
                "event": "action_completed",
                "trigger_name": trigger_name,
                "invocation_id": invocation_id,
                "source_event": event.to_dict(),
                "latency_ms": latency_ms,
            },
        )

    # ---------------------------------------------------------------------------
    # Shutdown
    # ---------------------------------------------------------------------------

    async def _watch_handler(self) -> None:
        assert self._handler is not None
        try:
            await self._handler.wait_for_signal()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("shutdown_handler_failed", handler=type(self._handler).__name__, error=str(exc))
            return
        self._shutdown.request(getattr(self._handler, "name", type(self._handler).__name__))

    async def _drain(self) -> ShutdownReport:
        channel = self._channel
        assert channel is not None
        self._state = AgentState.DRAINING
        log.info(
            "agent_draining",
            reason=self._shutdown.reason,
            inflight=self._inflight.count,
            policy=self._config.drain_policy.value,
        )
        await self._publish(
            TOPIC_AGENT,
            {"event": "agent_draining", "reason": self._shutdown.reason, "inflight": self._inflight.count},
        )

        discarder: asyncio.Task[None] | None = None
        if self._config.drain_policy is DrainPolicy.DISCARD:
            discarder = asyncio.create_task(self._discard(channel), name="agent_discard")
        else:
            channel.close()

        residual = await self._inflight.wait_idle(self._config.drain_timeout_seconds)

        if discarder is not None:
            channel.close()
            discarder.cancel()
            await asyncio.gather(discarder, return_exceptions=True)
            leftover = channel.drain_nowait()
            self._stats.discarded_events += len(leftover)
        unconsumed = channel.qsize()

        unterminated = await self._join_triggers()
        await self._flush_bus()

        if self._handler_task is not None and not self._handler_task.done():
            self._handler_task.cancel()
            await asyncio.gather(self._handler_task, return_exceptions=True)

        report = ShutdownReport(
            reason=self._shutdown.reason,
            residual_inflight=residual,
            unconsumed_events=unconsumed,
            discarded_events=self._stats.discarded_events,
            processed_events=self._stats.dispatched_events,
            render_failures=self._stats.render_failures,
            action_successes=self._stats.action_successes,
            action_failures=self._stats.action_failures,
            duration_seconds=round(time.monotonic() - self._started_at, 3),
            unterminated_triggers=unterminated,
        )
        self._report = report
        self._state = AgentState.STOPPED

        if residual:
            log.warning(
                "drain_incomplete",
                residual_inflight=residual,
                timeout=self._config.drain_timeout_seconds,
            )
            await self._publish(
                TOPIC_ERRORS,
                {"event": "drain_incomplete", "residual_inflight": residual},
            )
        log.info("agent_stopped", **report.to_dict())
        await self._publish(TOPIC_AGENT, {"event": "agent_stopped", **report.to_dict()})
        return report

    async def _discard(self, channel: EventChannel) -> None:
        while True:
            envelope = await channel.receive()
            self._stats.discarded_events += 1
            log.debug("event_discarded", event_name=envelope.event.name)

    async def _join_triggers(self) -> list[str]:
        """Wait for trigger tasks to observe the signal.  Never cancels them."""
        if not self._trigger_tasks:
            return []
        tasks = [task for _, task in self._trigger_tasks]
        await asyncio.wait(tasks, timeout=self._config.trigger_join_timeout_seconds)

        unterminated: list[str] = []
        for binding, task in self._trigger_tasks:
            if not task.done():
                unterminated.append(binding.trigger.name)
                log.warning("trigger_not_terminated", trigger_name=binding.trigger.name)
            elif not task.cancelled() and task.exception() is not None:
                log.error(
                    "trigger_task_failed",
                    trigger_name=binding.trigger.name,
                    error=str(task.exception()),
                )
        return unterminated

    def _publish_detached(self, topic: str, event: dict[str, Any]) -> None:
        """Publish outside the invocation task so sink latency is not in-flight time."""
        task = asyncio.create_task(self._publish(topic, event), name=f"publish_{event['event']}")
        self._bus_tasks.add(task)
        task.add_done_callback(self._bus_tasks.discard)

    async def _flush_bus(self) -> None:
        if not self._bus_tasks:
            return
        _, pending = await asyncio.wait(
            set(self._bus_tasks), timeout=self._config.trigger_join_timeout_seconds
        )
        if pending:
            log.warning("event_bus_flush_incomplete", pending=len(pending))

    async def _publish(self, topic: str, event: dict[str, Any]) -> None:
        try:
            await self._bus.emit(topic, event)
        except Exception as exc:
            log.error("event_bus_emit_failed", topic=topic, error=str(exc))
