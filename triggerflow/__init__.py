"""triggerflow — Event-driven agent coordinator.

Triggers detect occurrences and emit named events into one shared channel.
A single agent loop renders each event through the prompt template bound to
its trigger and hands the prompt to an action capability as a tracked,
independent invocation.  One shutdown broadcast stops every trigger and the
loop; in-flight invocations are then drained within a timeout.

Layers (bottom to top):
    1. Events    — Event, EventChannel, shutdown broadcast
    2. Triggers  — Trigger contract, BaseTrigger, PollTrigger
    3. Rendering — {{path}} / {{verbatim path}} prompt templates
    4. Agent     — AgentBuilder, Agent loop, in-flight drain, ShutdownReport
    5. Actions   — ActionCapability, LLM-backed action with rate-limit retries
    6. CLI       — ``triggerflow run | render | config show``
"""

__version__ = "0.1.0"

from triggerflow.action import ActionCapability, CallableAction
from triggerflow.agent import Agent, AgentBuilder, AgentState, ShutdownReport
from triggerflow.shutdown import SignalShutdown, TimeBasedShutdown
from triggerflow.template import TemplateRenderer, render_template
from triggerflow.triggers import BaseTrigger, Event, PollTrigger, Trigger

__all__ = [
    "__version__",
    "ActionCapability",
    "Agent",
    "AgentBuilder",
    "AgentState",
    "BaseTrigger",
    "CallableAction",
    "Event",
    "PollTrigger",
    "ShutdownReport",
    "SignalShutdown",
    "TemplateRenderer",
    "TimeBasedShutdown",
    "Trigger",
    "render_template",
]
