"""PollTrigger — emits the same event on a fixed interval.

Fires ``Event(event_name, payload)`` every ``interval_seconds``.  The schedule
is fixed-rate on the loop clock: each tick is computed from the previous
scheduled tick, not from when the emit finished, so slow consumers do not
make the trigger drift.

With ``hot_start=True`` the first event is emitted immediately on launch;
otherwise the first event comes after one full interval.
"""

from __future__ import annotations

import asyncio
from typing import Any

from triggerflow.exceptions import ChannelClosedError, ChannelFullError
from triggerflow.logging import get_logger
from triggerflow.shutdown import ShutdownObserver
from triggerflow.triggers.base import BaseTrigger, Emitter
from triggerflow.triggers.event import Event

log = get_logger(__name__)


class PollTrigger(BaseTrigger):
    """Timer trigger.

    Usage::

        trigger = PollTrigger("Tick", interval_seconds=12.0, hot_start=True)
    """

    def __init__(
        self,
        event_name: str,
        interval_seconds: float,
        hot_start: bool = False,
        payload: Any = None,
        name: str | None = None,
    ) -> None:
        super().__init__(name or f"poll:{event_name}")
        self._interval = float(interval_seconds)
        if self._interval <= 0:
            raise ValueError(f"interval_seconds must be positive, got {self._interval}")
        self._event_name = event_name
        self._hot_start = hot_start
        self._payload = payload
        # Validates the payload once, up front.
        Event(event_name, payload)

    @property
    def interval_seconds(self) -> float:
        return self._interval

    async def _run(self, emit: Emitter, stop: ShutdownObserver) -> None:
        loop = asyncio.get_running_loop()
        next_fire = loop.time()
        if not self._hot_start:
            next_fire += self._interval

        log.info(
            "poll_trigger_started",
            trigger_name=self.name,
            interval=self._interval,
            hot_start=self._hot_start,
        )
        while not stop.is_set:
            delay = max(0.0, next_fire - loop.time())
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
                break  # stop was requested
            except asyncio.TimeoutError:
                pass  # tick elapsed, fall through to fire
            next_fire += self._interval

            try:
                await emit(Event(self._event_name, self._payload))
            except ChannelFullError as exc:
                log.warning("poll_tick_dropped", trigger_name=self.name, error=str(exc))
            except ChannelClosedError:
                log.warning("poll_channel_closed", trigger_name=self.name)
                return

        log.info("poll_trigger_stopped", trigger_name=self.name)
