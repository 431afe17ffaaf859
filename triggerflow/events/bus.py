"""Observability sink for agent occurrences.

The agent publishes a flat dict for each lifecycle change, invocation outcome
and failure.  Sinks subscribe by being injected; the agent never waits on a
consumer and never fails because of one.

Backends:
  - NullEventBus    drops everything (default)
  - LogEventBus     appends NDJSON lines to a file
  - FanoutEventBus  forwards to several backends concurrently

Topics:
  TOPIC_AGENT    "triggerflow.agent"    agent_started, agent_draining, agent_stopped
  TOPIC_ACTIONS  "triggerflow.actions"  action_completed, action_failed
  TOPIC_ERRORS   "triggerflow.errors"   prompt_render_failed, trigger_launch_failed,
                                        drain_incomplete
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from triggerflow.logging import get_logger

log = get_logger(__name__)

TOPIC_AGENT = "triggerflow.agent"
TOPIC_ACTIONS = "triggerflow.actions"
TOPIC_ERRORS = "triggerflow.errors"


class EventBus(ABC):
    """Destination for agent occurrences.

    Each record gets ``_topic`` and ``_timestamp`` (epoch seconds) keys before
    it reaches the backend.  Implementations log their own failures instead of
    raising into the agent.
    """

    @abstractmethod
    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        """Deliver *event* under *topic*."""

    @staticmethod
    def _stamp(topic: str, event: dict[str, Any]) -> dict[str, Any]:
        event.setdefault("_topic", topic)
        event.setdefault("_timestamp", time.time())
        return event


class NullEventBus(EventBus):
    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        return None


class LogEventBus(EventBus):
    """NDJSON audit file, one record per line.

    Usage::

        bus = LogEventBus(Path("~/.triggerflow/events.ndjson"))
        await bus.emit(TOPIC_ERRORS, {"event": "drain_incomplete", "residual_inflight": 1})
    """

    def __init__(self, log_file: Path | None = None) -> None:
        self._path = log_file.expanduser() if log_file is not None else None
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path | None:
        return self._path

    def _append(self, line: str) -> None:
        assert self._path is not None
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line)

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        record = self._stamp(topic, event)
        log.debug("bus_record", topic=topic, record_type=record.get("event"))
        if self._path is None:
            return
        line = json.dumps(record, default=str, sort_keys=True) + "\n"
        async with self._write_lock:
            try:
                self._append(line)
            except OSError as exc:
                log.error("bus_write_failed", path=str(self._path), topic=topic, error=str(exc))


class FanoutEventBus(EventBus):
    """Sends every record to all *backends*; one failing backend does not affect the rest."""

    def __init__(self, backends: list[EventBus]) -> None:
        self._backends = list(backends)

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        record = self._stamp(topic, event)
        outcomes = await asyncio.gather(
            *(backend.emit(topic, dict(record)) for backend in self._backends),
            return_exceptions=True,
        )
        for backend, outcome in zip(self._backends, outcomes):
            if isinstance(outcome, Exception):
                log.error(
                    "bus_backend_failed",
                    backend=type(backend).__name__,
                    topic=topic,
                    error=str(outcome),
                )
