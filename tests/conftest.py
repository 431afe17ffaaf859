"""Shared pytest fixtures for the triggerflow test suite."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from triggerflow.action import ActionCapability
from triggerflow.config import Settings, override_settings
from triggerflow.shutdown import ShutdownObserver
from triggerflow.triggers.base import BaseTrigger, Emitter
from triggerflow.triggers.event import Event


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    settings = Settings(
        events={"log_file": str(tmp_path / "events.ndjson")},
        logging={"level": "debug", "format": "console", "file": None},
    )
    override_settings(settings)
    return settings


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_bus() -> MagicMock:
    bus = MagicMock()
    bus.emit = AsyncMock()
    return bus


# ---------------------------------------------------------------------------
# Triggers and actions
# ---------------------------------------------------------------------------


class ScriptedTrigger(BaseTrigger):
    """Emits a fixed list of events, then idles until shutdown."""

    def __init__(self, name: str, events: list[Event], delay: float = 0.0) -> None:
        super().__init__(name)
        self.events = events
        self.delay = delay
        self.emitted = 0

    async def _run(self, emit: Emitter, stop: ShutdownObserver) -> None:
        for event in self.events:
            if stop.is_set:
                return
            await emit(event)
            self.emitted += 1
            if self.delay:
                await asyncio.sleep(self.delay)
        await stop.wait()


class RecordingAction(ActionCapability):
    """Collects every prompt; optionally fails or blocks on selected prompts."""

    def __init__(
        self,
        fail_on: set[str] | None = None,
        block: asyncio.Event | None = None,
        delay: float = 0.0,
    ) -> None:
        self.prompts: list[str] = []
        self.completed: list[str] = []
        self.fail_on = fail_on or set()
        self.block = block
        self.delay = delay

    async def invoke(self, prompt: str) -> Any:
        self.prompts.append(prompt)
        if self.block is not None:
            await self.block.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if prompt in self.fail_on:
            raise RuntimeError(f"action failed for {prompt}")
        self.completed.append(prompt)
        return f"ok:{prompt}"


@pytest.fixture
def recording_action() -> RecordingAction:
    return RecordingAction()
