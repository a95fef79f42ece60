from __future__ import annotations

"""
Collaborator ports for the planet pipeline.

The life engine only needs event lists from geology and weather; these
protocols name exactly what it reads. Implementations may expose the members
as plain attributes, properties or zero-argument methods.

StaticEventFeed is the trivial implementation of both ports: hosts and tests
push event lists into it between ticks.

Notes
- Coordinates are grid cells (x = column, y = row).
- The feed holds values only; it does not age or expire events.
"""

from dataclasses import dataclass, field
from typing import Iterable, Protocol, runtime_checkable

from ..ecology.types import Earthquake, Eruption, Storm


class WiringError(ValueError):
    """A required collaborator reference was not supplied."""


@runtime_checkable
class GeologyEventSource(Protocol):
    @property
    def recent_eruptions(self) -> Iterable[Eruption]: ...

    @property
    def earthquakes(self) -> Iterable[Earthquake]: ...


@runtime_checkable
class StormSource(Protocol):
    @property
    def active_storms(self) -> Iterable[Storm]: ...


@dataclass
class StaticEventFeed:
    recent_eruptions: list[Eruption] = field(default_factory=list)
    earthquakes: list[Earthquake] = field(default_factory=list)
    active_storms: list[Storm] = field(default_factory=list)

    def clear(self) -> None:
        self.recent_eruptions.clear()
        self.earthquakes.clear()
        self.active_storms.clear()


def require(obj, what: str, port: type | None = None):
    """Return `obj`; WiringError if it is None or does not expose the members of `port`."""
    if obj is None:
        raise WiringError(f"missing collaborator: {what}")
    if port is not None and not isinstance(obj, port):
        raise WiringError(f"{what} does not provide {port.__name__} ({type(obj).__name__} given)")
    return obj


__all__ = ["WiringError", "GeologyEventSource", "StormSource", "StaticEventFeed", "require"]
