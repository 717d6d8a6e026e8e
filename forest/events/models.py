"""Event envelope: the immutable unit of work flowing through the River."""

import time
import uuid
from dataclasses import dataclass
from typing import Any

__all__ = ["EventEnvelope", "new_event_id"]


def new_event_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class EventEnvelope:
    """Immutable event passed to executors.

    Derived events never reuse an id and always point back at their parent
    through causation_id, so causation chains cannot form a cycle.
    """

    id: str
    subject: str
    payload: dict
    correlation_id: str
    timestamp: float
    causation_id: str | None = None
    delivery_attempt: int = 1
    source: str = ""
    hops: int = 0

    @classmethod
    def create(
        cls,
        subject: str,
        payload: dict,
        source: str = "",
        correlation_id: str | None = None,
    ) -> "EventEnvelope":
        """Root event as produced by a Source. Correlation defaults to its own id."""
        event_id = new_event_id()
        return cls(
            id=event_id,
            subject=subject,
            payload=payload,
            correlation_id=correlation_id or event_id,
            timestamp=time.time(),
            source=source,
        )

    def derive(self, subject: str, payload: dict, source: str) -> "EventEnvelope":
        """Child event caused by this one: same correlation, one hop further."""
        return EventEnvelope(
            id=new_event_id(),
            subject=subject,
            payload=payload,
            correlation_id=self.correlation_id,
            timestamp=time.time(),
            causation_id=self.id,
            source=source,
            hops=self.hops + 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "payload": self.payload,
            "correlation_id": self.correlation_id,
            "causation_id": self.causation_id,
            "timestamp": self.timestamp,
            "delivery_attempt": self.delivery_attempt,
            "source": self.source,
            "hops": self.hops,
        }

