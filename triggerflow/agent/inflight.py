"""In-flight invocation tracking.

Each action invocation runs as its own task.  The tracker counts a task from
the moment it is spawned until its done-callback fires, whatever the outcome
(result, exception or cancellation), so invocations may finish in any order.
All mutation happens on the event loop thread.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from triggerflow.logging import get_logger

log = get_logger(__name__)


class InFlightTracker:
    """Counts running invocation tasks and lets the agent wait for zero."""

    def __init__(self) -> None:
        self._count = 0
        self._started = 0
        self._completed = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def count(self) -> int:
        return self._count

    @property
    def started(self) -> int:
        return self._started

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def idle(self) -> bool:
        return self._count == 0

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        """Count and schedule *coro* as an independent task."""
        self._count += 1
        self._started += 1
        self._idle.clear()
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        self._count -= 1
        self._completed += 1
        if self._count == 0:
            self._idle.set()

    async def wait_idle(self, timeout: float | None = None) -> int:
        """Wait until nothing is in flight or *timeout* elapses.

        Returns:
            The number of invocations still running (0 on a complete drain).
        """
        if self._count == 0:
            return 0
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            log.debug("inflight_wait_timeout", residual=self._count, timeout=timeout)
        return self._count
