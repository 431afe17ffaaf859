"""EventChannel — the multi-producer, single-consumer event queue.

Every trigger sends into the same channel; the agent loop is the only
receiver.  Concurrency safety comes from ``asyncio.Queue``.

Backpressure
------------
``capacity == 0`` means unbounded.  With a bounded channel a producer that
finds it full blocks for up to ``send_timeout`` seconds.  If space frees up
the event is enqueued; if the channel is closed meanwhile the producer gets
``ChannelClosedError``; if the timeout elapses the producer gets
``ChannelFullError`` and decides itself whether to drop or retry.  Events are
never dropped without the producer being told.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from triggerflow.exceptions import ChannelClosedError, ChannelFullError
from triggerflow.logging import get_logger
from triggerflow.triggers.event import Event

log = get_logger(__name__)


@dataclass(frozen=True)
class Envelope:
    """An event tagged with the index of the trigger binding that sent it."""

    binding: int
    event: Event


class EventChannel:
    """FIFO of Events shared by all triggers of one agent."""

    def __init__(self, capacity: int = 0, send_timeout: float = 5.0) -> None:
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")
        self._capacity = capacity
        self._send_timeout = send_timeout
        self._queue: asyncio.Queue[Envelope] = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, event: Event, binding: int = 0) -> None:
        """Enqueue *event*, blocking up to the send timeout when full."""
        if self.closed:
            raise ChannelClosedError()
        envelope = Envelope(binding, event)
        if not self._queue.full():
            self._queue.put_nowait(envelope)
            return

        put = asyncio.ensure_future(self._queue.put(envelope))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {put, closed},
                timeout=self._send_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in (put, closed):
                if not waiter.done():
                    waiter.cancel()

        if put in done:
            return
        if closed in done:
            raise ChannelClosedError()
        log.warning(
            "channel_send_timeout",
            event_name=event.name,
            capacity=self._capacity,
            timeout=self._send_timeout,
        )
        raise ChannelFullError(self._capacity, self._send_timeout)

    async def receive(self) -> Envelope:
        """Return the next envelope in arrival order."""
        return await self._queue.get()

    def drain_nowait(self) -> list[Envelope]:
        """Remove and return every buffered envelope."""
        events: list[Envelope] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def close(self) -> None:
        """Refuse further sends and release blocked producers.  Idempotent."""
        if not self.closed:
            self._closed.set()
            log.debug("channel_closed", buffered=self._queue.qsize())
