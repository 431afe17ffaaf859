"""triggerflow — Trigger subsystem.

Package structure
-----------------
triggers/
  event.py  — Event: immutable named payload
  base.py   — Trigger ABC + BaseTrigger (crash isolation)
  poll.py   — PollTrigger: fixed-interval timer
"""

from triggerflow.triggers.base import BaseTrigger, Emitter, Trigger
from triggerflow.triggers.event import Event
from triggerflow.triggers.poll import PollTrigger

__all__ = [
    "BaseTrigger",
    "Emitter",
    "Event",
    "PollTrigger",
    "Trigger",
]
