"""triggerflow — Agent coordinator core.

Package structure
-----------------
agent/
  channel.py   — EventChannel: shared multi-producer event queue
  inflight.py  — InFlightTracker: counts running action invocations
  core.py      — Agent: launch, consume, dispatch, drain
  builder.py   — AgentBuilder: validated construction
"""

from triggerflow.agent.builder import AgentBuilder
from triggerflow.agent.channel import Envelope, EventChannel
from triggerflow.agent.core import (
    Agent,
    AgentState,
    AgentStats,
    ShutdownReport,
    TriggerBinding,
)
from triggerflow.agent.inflight import InFlightTracker

__all__ = [
    "Agent",
    "AgentBuilder",
    "AgentState",
    "AgentStats",
    "Envelope",
    "EventChannel",
    "InFlightTracker",
    "ShutdownReport",
    "TriggerBinding",
]
