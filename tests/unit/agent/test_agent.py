"""Unit tests — agent/core.py (Agent loop, dispatch, drain, report)."""

from __future__ import annotations

import asyncio
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import RecordingAction, ScriptedTrigger
from triggerflow.action import ActionCapability
from triggerflow.agent import Agent, AgentBuilder, AgentState
from triggerflow.config import DrainPolicy
from triggerflow.events.bus import TOPIC_ACTIONS, TOPIC_AGENT, TOPIC_ERRORS
from triggerflow.exceptions import AgentStateError
from triggerflow.shutdown import ShutdownHandler, ShutdownObserver, TimeBasedShutdown
from triggerflow.triggers.base import BaseTrigger, Emitter
from triggerflow.triggers.event import Event
from triggerflow.triggers.poll import PollTrigger


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


async def stop(agent: Agent, reason: str = "test") -> Any:
    agent.request_shutdown(reason)
    return await asyncio.wait_for(agent.wait(), timeout=2.0)


class BurstTrigger(BaseTrigger):
    """Emits all its events back to back, ignoring the stop signal until done."""

    def __init__(self, name: str, count: int) -> None:
        super().__init__(name)
        self.count = count

    async def _run(self, emit: Emitter, stop: ShutdownObserver) -> None:
        for i in range(self.count):
            await emit(Event("Burst", {"i": i}))
        await stop.wait()


class StubbornTrigger(BaseTrigger):
    """Never observes the shutdown signal."""

    def __init__(self, name: str, release: asyncio.Event) -> None:
        super().__init__(name)
        self.release = release

    async def _run(self, emit: Emitter, stop: ShutdownObserver) -> None:
        await self.release.wait()


class DelayedAction(ActionCapability):
    """Completes each prompt after the delay mapped to it."""

    def __init__(self, delays: dict[str, float]) -> None:
        self.delays = delays
        self.finished: list[str] = []

    async def invoke(self, prompt: str) -> str:
        await asyncio.sleep(self.delays[prompt])
        self.finished.append(prompt)
        return prompt


class FailingHandler(ShutdownHandler):
    name = "broken"

    async def wait_for_signal(self) -> None:
        raise RuntimeError("cannot watch")


def build(action: ActionCapability, *triggers: Any, template: str = "{{name}}", **overrides: Any) -> Agent:
    builder = AgentBuilder().with_action(action).with_prompt_template(template)
    for trigger in triggers:
        builder.add_trigger(trigger)
    for key, value in overrides.items():
        getattr(builder, f"with_{key}")(value)
    return builder.build()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestDispatch:
    async def test_invocations_match_rendered_events(self, recording_action: RecordingAction) -> None:
        trigger = ScriptedTrigger(
            "inbox",
            [
                Event("NewEmail", {"id": "a"}),
                Event("NewEmail", {}),
                Event("NewEmail", {"id": "c"}),
            ],
        )
        agent = build(recording_action, trigger, template="{{name}}:{{payload.id}}")
        await agent.start()
        assert agent.state is AgentState.RUNNING
        await until(lambda: len(recording_action.completed) == 2 and agent.stats.render_failures == 1)
        report = await stop(agent)

        assert recording_action.prompts == ["NewEmail:a", "NewEmail:c"]
        assert report.processed_events == 2
        assert report.render_failures == 1
        assert report.action_successes == 2
        assert agent.stats.received_events == 3
        assert agent.inflight == 0

    async def test_per_trigger_order_is_preserved(self, recording_action: RecordingAction) -> None:
        a = ScriptedTrigger("a", [Event("A", {"n": i}) for i in range(5)], delay=0.001)
        b = ScriptedTrigger("b", [Event("B", {"n": i}) for i in range(5)], delay=0.001)
        agent = build(recording_action, a, b, template="{{name}}{{payload.n}}")
        await agent.start()
        await until(lambda: len(recording_action.completed) == 10)
        await stop(agent)

        assert [p for p in recording_action.prompts if p.startswith("A")] == [f"A{i}" for i in range(5)]
        assert [p for p in recording_action.prompts if p.startswith("B")] == [f"B{i}" for i in range(5)]

    async def test_each_trigger_uses_its_own_template(self, recording_action: RecordingAction) -> None:
        mail = ScriptedTrigger("mail", [Event("NewEmail", {"id": "abc123"})])
        clock = ScriptedTrigger("clock", [Event("Tick")])
        agent = (
            AgentBuilder()
            .with_action(recording_action)
            .with_prompt_template("default:{{name}}")
            .add_trigger(mail, template="{{name}}:{{payload.id}}")
            .add_trigger(clock)
            .build()
        )
        await agent.start()
        await until(lambda: len(recording_action.completed) == 2)
        await stop(agent)
        assert sorted(recording_action.prompts) == ["NewEmail:abc123", "default:Tick"]

    async def test_slow_action_does_not_stall_the_loop(self) -> None:
        gate = asyncio.Event()
        action = RecordingAction(block=gate)
        trigger = ScriptedTrigger("t", [Event("E", {"n": i}) for i in range(3)])
        agent = build(action, trigger, template="{{payload.n}}")
        await agent.start()
        await until(lambda: agent.inflight == 3)
        assert action.prompts == ["0", "1", "2"]
        gate.set()
        report = await stop(agent)
        assert report.action_successes == 3
        assert report.residual_inflight == 0

    async def test_inflight_returns_to_zero_in_any_completion_order(self) -> None:
        action = DelayedAction({"slow": 0.04, "fast": 0.0, "mid": 0.02})
        trigger = ScriptedTrigger("t", [Event("slow"), Event("fast"), Event("mid")])
        agent = build(action, trigger)
        await agent.start()
        await until(lambda: len(action.finished) == 3)
        assert agent.inflight == 0
        assert action.finished == ["fast", "mid", "slow"]
        report = await stop(agent)
        assert report.drained

    async def test_action_failure_is_isolated(self) -> None:
        action = RecordingAction(fail_on={"bad"})
        trigger = ScriptedTrigger("t", [Event("bad"), Event("good")])
        agent = build(action, trigger)
        await agent.start()
        await until(lambda: agent.stats.action_failures == 1 and agent.stats.action_successes == 1)
        report = await stop(agent)
        assert report.action_failures == 1
        assert report.action_successes == 1
        assert agent.state is AgentState.STOPPED


# ---------------------------------------------------------------------------
# Shutdown and drain
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestShutdown:
    async def test_hot_start_poll_trigger_yields_two_events(self, recording_action: RecordingAction) -> None:
        trigger = PollTrigger("Tick", interval_seconds=0.1, hot_start=True)
        agent = build(recording_action, trigger)
        await agent.start()
        await asyncio.sleep(0.15)
        report = await stop(agent)

        assert report.processed_events == 2
        assert report.residual_inflight == 0
        assert report.unterminated_triggers == []
        assert agent.state is AgentState.STOPPED

    async def test_double_shutdown_equals_single(self, recording_action: RecordingAction) -> None:
        agent = build(recording_action, ScriptedTrigger("t", []))
        await agent.start()
        assert agent.request_shutdown("first") is True
        assert agent.request_shutdown("second") is False
        report = await asyncio.wait_for(agent.wait(), timeout=2.0)
        assert report.reason == "first"
        assert agent.request_shutdown("third") is False
        assert await agent.wait() is report

    async def test_agent_without_triggers_idles_until_shutdown(
        self, recording_action: RecordingAction
    ) -> None:
        agent = build(recording_action)
        await agent.start()
        assert agent.state is AgentState.RUNNING
        await asyncio.sleep(0.05)
        assert agent.state is AgentState.RUNNING

        report = await stop(agent)
        assert agent.state is AgentState.STOPPED
        assert report.residual_inflight == 0
        assert report.processed_events == 0
        assert report.unterminated_triggers == []

    async def test_slow_invocation_exceeding_drain_timeout(self) -> None:
        gate = asyncio.Event()
        action = RecordingAction(block=gate)
        agent = build(action, ScriptedTrigger("t", [Event("E")]), drain_timeout=0.05)
        await agent.start()
        await until(lambda: agent.inflight == 1)
        report = await stop(agent)

        assert agent.state is AgentState.STOPPED
        assert report.residual_inflight == 1
        assert not report.drained
        gate.set()
        await until(lambda: agent.inflight == 0)

    async def test_counted_invocation_finishes_during_drain(self) -> None:
        gate = asyncio.Event()
        action = RecordingAction(block=gate)
        agent = build(action, ScriptedTrigger("t", [Event("E")]), drain_timeout=2.0)
        await agent.start()
        await until(lambda: agent.inflight == 1)
        agent.request_shutdown()
        await asyncio.sleep(0.01)
        assert agent.state is AgentState.DRAINING
        gate.set()
        report = await asyncio.wait_for(agent.wait(), timeout=2.0)
        assert report.action_successes == 1
        assert report.residual_inflight == 0

    async def test_shutdown_before_start_drains_immediately(self, recording_action: RecordingAction) -> None:
        agent = build(recording_action, ScriptedTrigger("t", [Event("E")]))
        agent.request_shutdown("early")
        report = await asyncio.wait_for(agent.run(), timeout=2.0)
        assert report.reason == "early"
        assert report.processed_events == 0
        assert recording_action.prompts == []

    async def test_stop_policy_leaves_buffered_events_unconsumed(
        self, recording_action: RecordingAction
    ) -> None:
        agent = build(recording_action, BurstTrigger("burst", 5))
        await agent.start()
        report = await stop(agent)
        assert report.processed_events == 0
        assert report.unconsumed_events + report.discarded_events == 5
        assert report.unconsumed_events >= 4

    async def test_discard_policy_empties_the_channel(self, recording_action: RecordingAction) -> None:
        agent = build(recording_action, BurstTrigger("burst", 5), drain_policy=DrainPolicy.DISCARD)
        await agent.start()
        report = await stop(agent)
        assert report.processed_events == 0
        assert report.discarded_events == 5
        assert report.unconsumed_events == 0

    async def test_stubborn_trigger_reported_not_cancelled(self, recording_action: RecordingAction) -> None:
        release = asyncio.Event()
        trigger = StubbornTrigger("stubborn", release)
        agent = build(recording_action, trigger, trigger_join_timeout=0.02)
        await agent.start()
        report = await stop(agent)
        assert report.unterminated_triggers == ["stubborn"]
        assert trigger.is_running
        release.set()
        await until(lambda: not trigger.is_running)

    async def test_time_based_handler_stops_the_agent(self, recording_action: RecordingAction) -> None:
        agent = (
            AgentBuilder()
            .with_action(recording_action)
            .with_prompt_template("{{name}}")
            .add_trigger(ScriptedTrigger("t", []))
            .with_shutdown_handler(TimeBasedShutdown(0.02))
            .build()
        )
        report = await asyncio.wait_for(agent.run(), timeout=2.0)
        assert report.reason == "deadline"

    async def test_failing_handler_does_not_stop_the_agent(self, recording_action: RecordingAction) -> None:
        agent = (
            AgentBuilder()
            .with_action(recording_action)
            .with_prompt_template("{{name}}")
            .add_trigger(ScriptedTrigger("t", []))
            .with_shutdown_handler(FailingHandler())
            .build()
        )
        await agent.start()
        await asyncio.sleep(0.02)
        assert not agent.shutdown_requested
        report = await stop(agent, "manual")
        assert report.reason == "manual"

    async def test_context_manager_requests_shutdown_on_exit(
        self, recording_action: RecordingAction
    ) -> None:
        agent = build(recording_action, ScriptedTrigger("t", [Event("E")]))
        async with agent:
            await until(lambda: len(recording_action.completed) == 1)
        assert agent.state is AgentState.STOPPED
        assert agent.report is not None
        assert agent.report.reason == "context_exit"


# ---------------------------------------------------------------------------
# Lifecycle errors and trigger isolation
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestLifecycle:
    async def test_start_twice_rejected(self, recording_action: RecordingAction) -> None:
        agent = build(recording_action, ScriptedTrigger("t", []))
        await agent.start()
        with pytest.raises(AgentStateError):
            await agent.start()
        await stop(agent)
        with pytest.raises(AgentStateError):
            await agent.start()

    async def test_wait_before_start_rejected(self, recording_action: RecordingAction) -> None:
        agent = build(recording_action, ScriptedTrigger("t", []))
        with pytest.raises(AgentStateError):
            await agent.wait()

    async def test_crashed_trigger_does_not_affect_siblings(self, recording_action: RecordingAction) -> None:
        class Crashing(BaseTrigger):
            async def _run(self, emit: Emitter, stop: ShutdownObserver) -> None:
                raise RuntimeError("disk gone")

        healthy = ScriptedTrigger("healthy", [Event("E")])
        agent = build(recording_action, Crashing("crashing"), healthy)
        await agent.start()
        await until(lambda: len(recording_action.completed) == 1)
        assert agent.trigger_errors() == {"crashing": "disk gone"}
        report = await stop(agent)
        assert report.processed_events == 1

    async def test_non_event_emission_crashes_only_that_trigger(
        self, recording_action: RecordingAction
    ) -> None:
        class Sloppy(BaseTrigger):
            async def _run(self, emit: Emitter, stop: ShutdownObserver) -> None:
                await emit({"name": "NotAnEvent"})  # type: ignore[arg-type]

        agent = build(recording_action, Sloppy("sloppy"))
        await agent.start()
        await until(lambda: "sloppy" in agent.trigger_errors())
        report = await stop(agent)
        assert report.processed_events == 0

    async def test_launch_failure_is_skipped(self, recording_action: RecordingAction) -> None:
        broken = MagicMock()
        broken.name = "broken"
        broken.launch.side_effect = RuntimeError("no credentials")
        healthy = ScriptedTrigger("healthy", [Event("E")])
        agent = build(recording_action, broken, healthy)
        await agent.start()
        await until(lambda: len(recording_action.completed) == 1)
        report = await stop(agent)
        assert report.processed_events == 1


# ---------------------------------------------------------------------------
# Event bus reporting
# ---------------------------------------------------------------------------


def _published(bus: MagicMock) -> list[tuple[str, str]]:
    return [(call.args[0], call.args[1]["event"]) for call in bus.emit.call_args_list]


@pytest.mark.unit
class TestEventBus:
    async def test_lifecycle_and_outcomes_published(self, mock_bus: MagicMock) -> None:
        action = RecordingAction(fail_on={"E:bad"})
        trigger = ScriptedTrigger("t", [Event("E", {"v": "ok"}), Event("E", {"v": "bad"}), Event("E", {})])
        agent = (
            AgentBuilder()
            .with_action(action)
            .with_prompt_template("{{name}}:{{payload.v}}")
            .add_trigger(trigger)
            .with_event_bus(mock_bus)
            .build()
        )
        await agent.start()
        await until(lambda: len(action.prompts) == 2 and agent.stats.render_failures == 1)
        await until(lambda: agent.inflight == 0)
        await stop(agent)

        published = _published(mock_bus)
        assert published[0] == (TOPIC_AGENT, "agent_started")
        assert (TOPIC_ACTIONS, "action_completed") in published
        assert (TOPIC_ACTIONS, "action_failed") in published
        assert (TOPIC_ERRORS, "prompt_render_failed") in published
        assert (TOPIC_AGENT, "agent_draining") in published
        assert published[-1] == (TOPIC_AGENT, "agent_stopped")

    async def test_incomplete_drain_published(self, mock_bus: MagicMock) -> None:
        gate = asyncio.Event()
        agent = (
            AgentBuilder()
            .with_action(RecordingAction(block=gate))
            .with_prompt_template("{{name}}")
            .add_trigger(ScriptedTrigger("t", [Event("E")]))
            .with_event_bus(mock_bus)
            .with_drain_timeout(0.02)
            .build()
        )
        await agent.start()
        await until(lambda: agent.inflight == 1)
        await stop(agent)
        assert (TOPIC_ERRORS, "drain_incomplete") in _published(mock_bus)
        gate.set()
        await until(lambda: agent.inflight == 0)

    async def test_bus_failure_does_not_stop_the_agent(self, recording_action: RecordingAction) -> None:
        bus = MagicMock()
        bus.emit = AsyncMock(side_effect=RuntimeError("sink down"))
        agent = (
            AgentBuilder()
            .with_action(recording_action)
            .with_prompt_template("{{name}}")
            .add_trigger(ScriptedTrigger("t", [Event("E")]))
            .with_event_bus(bus)
            .build()
        )
        await agent.start()
        await until(lambda: len(recording_action.completed) == 1)
        report = await stop(agent)
        assert report.action_successes == 1

    async def test_slow_bus_does_not_hold_invocations_in_flight(
        self, recording_action: RecordingAction
    ) -> None:
        sink_gate = asyncio.Event()
        records: list[dict[str, Any]] = []

        async def slow_emit(topic: str, event: dict[str, Any]) -> None:
            if topic == TOPIC_ACTIONS:
                await sink_gate.wait()
            records.append(event)

        bus = MagicMock()
        bus.emit = AsyncMock(side_effect=slow_emit)
        agent = (
            AgentBuilder()
            .with_action(recording_action)
            .with_prompt_template("{{name}}")
            .add_trigger(ScriptedTrigger("t", [Event("E", {"id": 7})]))
            .with_event_bus(bus)
            .build()
        )
        await agent.start()
        await until(lambda: len(recording_action.completed) == 1)
        await until(lambda: agent.inflight == 0)
        assert not any(r["event"] == "action_completed" for r in records)

        sink_gate.set()
        report = await stop(agent)
        assert report.residual_inflight == 0
        completed = next(r for r in records if r["event"] == "action_completed")
        assert completed["source_event"] == {"name": "E", "payload": {"id": 7}}
        assert records[-1]["event"] == "agent_stopped"
