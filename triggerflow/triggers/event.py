"""Event — the immutable notification a trigger hands to the agent.

An event carries a ``name`` (its semantic category, e.g. ``"NewEmail"``) and
an optional JSON-compatible ``payload``.  The payload is frozen at
construction: objects become read-only mappings and arrays become tuples, so
neither the producing trigger nor any consumer can change it after emission.
``to_context()`` hands out a plain, mutable copy.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

_SCALARS = (str, int, float, bool, type(None))


def _freeze(value: Any, path: str) -> Any:
    """Return a read-only copy of *value*, rejecting non-JSON types."""
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Payload keys must be strings, got {key!r} at '{path}'")
            out[key] = _freeze(item, f"{path}.{key}")
        return MappingProxyType(out)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item, f"{path}.{i}") for i, item in enumerate(value))
    raise ValueError(
        f"Payload value at '{path}' is not JSON-compatible: {type(value).__name__}"
    )


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class Event:
    """A named occurrence detected by a trigger."""

    name: str
    payload: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Event name must be a non-empty string")
        object.__setattr__(self, "payload", _freeze(self.payload, "payload"))

    def __hash__(self) -> int:
        return hash((self.name, json.dumps(_thaw(self.payload), sort_keys=True)))

    def to_context(self) -> dict[str, Any]:
        """Return the template rendering context for this event."""
        return {"name": self.name, "payload": _thaw(self.payload)}

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form attached to the agent's event bus records."""
        return self.to_context()
