"""Shutdown — the single-fire broadcast every task observes.

ShutdownCoordinator
    Owns one ``asyncio.Event``.  ``request()`` sets it once; later calls are
    no-ops.  Every trigger and the agent loop receive the *same* observer, so
    there is exactly one signal per agent.

ShutdownHandler
    A process-level source that decides *when* to shut down:

    SignalShutdown     — first SIGINT / SIGTERM
    TimeBasedShutdown  — fixed deadline after the agent starts
"""

from __future__ import annotations

import asyncio
import signal
from abc import ABC, abstractmethod
from collections.abc import Iterable

from triggerflow.logging import get_logger

log = get_logger(__name__)


class ShutdownObserver:
    """Read-only view of a ShutdownCoordinator handed to concurrent tasks."""

    def __init__(self, event: asyncio.Event) -> None:
        self._event = event

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Suspend until shutdown has been requested."""
        await self._event.wait()


class ShutdownCoordinator:
    """Single-fire, many-observer shutdown broadcast."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def request(self, reason: str = "requested") -> bool:
        """Raise the signal.  Returns True only for the call that raised it."""
        if self._event.is_set():
            log.debug("shutdown_already_requested", reason=reason, first_reason=self._reason)
            return False
        self._reason = reason
        self._event.set()
        log.info("shutdown_requested", reason=reason)
        return True

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def observer(self) -> ShutdownObserver:
        return ShutdownObserver(self._event)


# ---------------------------------------------------------------------------
# Shutdown sources
# ---------------------------------------------------------------------------


class ShutdownHandler(ABC):
    """A source that resolves when the process should shut down."""

    name: str = "shutdown_handler"

    @abstractmethod
    async def wait_for_signal(self) -> None:
        """Return once a shutdown condition has occurred."""


class SignalShutdown(ShutdownHandler):
    """Resolves on the first of *signals* delivered to the process.

    Handlers are installed on the running loop when waiting starts and removed
    once a signal arrives (or the wait is cancelled).
    """

    name = "signal"

    def __init__(self, signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM)) -> None:
        self._signals = tuple(signals)
        self.received: signal.Signals | None = None

    async def wait_for_signal(self) -> None:
        loop = asyncio.get_running_loop()
        fired = asyncio.Event()

        def _on_signal(sig: signal.Signals) -> None:
            self.received = sig
            fired.set()

        for sig in self._signals:
            loop.add_signal_handler(sig, _on_signal, sig)
        try:
            await fired.wait()
            log.info("shutdown_signal_received", signal=self.received.name if self.received else None)
        finally:
            for sig in self._signals:
                loop.remove_signal_handler(sig)


class TimeBasedShutdown(ShutdownHandler):
    """Resolves *duration_seconds* after waiting starts."""

    name = "deadline"

    def __init__(self, duration_seconds: float) -> None:
        if duration_seconds < 0:
            raise ValueError(f"duration_seconds must be >= 0, got {duration_seconds}")
        self._duration = float(duration_seconds)

    async def wait_for_signal(self) -> None:
        log.info("shutdown_scheduled", duration_seconds=self._duration)
        await asyncio.sleep(self._duration)
        log.info("shutdown_deadline_reached", duration_seconds=self._duration)
