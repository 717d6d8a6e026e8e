"""Execution outcomes. Every executor path ends in exactly one of these."""

from dataclasses import dataclass, field
from typing import Union

from forest.events.models import EventEnvelope

__all__ = ["Failed", "Outcome", "Published", "Rejected", "Timeout"]


@dataclass(frozen=True)
class Published:
    """Handler succeeded; events are published in order."""

    events: tuple[EventEnvelope, ...] = ()


@dataclass(frozen=True)
class Rejected:
    """Permanent problem with input or output. Not retried."""

    reason: str
    detail: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Failed:
    """Transient problem. Retried with backoff up to the attempt ceiling."""

    reason: str


@dataclass(frozen=True)
class Timeout:
    """Hard execution timeout hit. Retried like Failed."""

    reason: str = "execution timed out"


Outcome = Union[Published, Rejected, Failed, Timeout]
