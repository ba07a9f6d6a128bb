"""Arrival events passed from the watcher to the handler."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class EventKind(str, Enum):
    """Kinds of filesystem events the watcher dispatches."""

    CREATED = "created"


@dataclass(frozen=True)
class ArrivalEvent:
    """A single new file observed in the watch directory."""

    path: Path
    kind: EventKind = EventKind.CREATED
