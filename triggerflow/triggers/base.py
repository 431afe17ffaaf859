"""Trigger — contract for event sources, plus the BaseTrigger helper.

A trigger runs in the background as an asyncio task.  Whenever it detects an
occurrence it awaits ``emit(Event(...))`` to push the event into the agent's
shared channel.

Contract
--------
- ``launch(emit, stop)`` — start the background task and return it at once
- ``stop``               — ShutdownObserver shared by every task of the agent
- ``emit``               — raises ``ChannelClosedError`` when the agent is gone
                           (the trigger must then return) and
                           ``ChannelFullError`` when the channel stays full

Emissions of one trigger are awaited one after another, so the agent sees
them in detection order.

BaseTrigger subclasses must:
1. Override ``_run(emit, stop)`` — the main loop / watch logic
2. Return when ``stop.is_set`` or on ``ChannelClosedError``
3. Not worry about crashes — ``_guarded_run()`` records and logs them without
   touching sibling triggers or the agent
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from triggerflow.exceptions import ChannelClosedError, TriggerLaunchError
from triggerflow.logging import get_logger
from triggerflow.shutdown import ShutdownObserver
from triggerflow.triggers.event import Event

log = get_logger(__name__)

Emitter = Callable[[Event], Awaitable[None]]
"""
Signature: async def emit(event: Event) -> None
"""


class Trigger(ABC):
    """Capability interface the agent depends on."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable identifier used in logs and reports."""

    @abstractmethod
    def launch(self, emit: Emitter, stop: ShutdownObserver) -> asyncio.Task[None]:
        """Start the trigger as an independent task and return its handle."""


class BaseTrigger(Trigger):
    """Trigger with crash isolation and launch bookkeeping."""

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("Trigger name must be a non-empty string")
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self.error: str | None = None  # set on unrecoverable failure

    @property
    def name(self) -> str:
        return self._name

    # ---------------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------------

    def launch(self, emit: Emitter, stop: ShutdownObserver) -> asyncio.Task[None]:
        """Start the trigger background task."""
        if self.is_running:
            raise TriggerLaunchError(self._name, "already running")
        self.error = None
        self._task = asyncio.create_task(
            self._guarded_run(emit, stop), name=f"trigger_{self._name}"
        )
        log.debug("trigger_launched", trigger_name=self._name)
        return self._task

    @property
    def is_running(self) -> bool:
        """True if the background task is alive."""
        return self._task is not None and not self._task.done()

    # ---------------------------------------------------------------------------
    # Abstract implementation hook
    # ---------------------------------------------------------------------------

    @abstractmethod
    async def _run(self, emit: Emitter, stop: ShutdownObserver) -> None:
        """Main watch loop.  Run until ``stop.is_set``.

        Call ``await emit(Event(...))`` for every detected occurrence.
        """

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _guarded_run(self, emit: Emitter, stop: ShutdownObserver) -> None:
        """Wrap ``_run()`` so one trigger's failure stays its own."""
        try:
            await self._run(emit, stop)
        except asyncio.CancelledError:
            raise
        except ChannelClosedError:
            log.info("trigger_channel_closed", trigger_name=self._name)
        except Exception as exc:
            self.error = str(exc) or exc.__class__.__name__
            log.error("trigger_crashed", trigger_name=self._name, error=self.error)
        else:
            log.debug("trigger_finished", trigger_name=self._name)
