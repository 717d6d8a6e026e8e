"""In-flight records: one per (event, binding), owned by the Dispatcher."""

import time
from dataclasses import dataclass, field
from enum import Enum

from forest.events.models import EventEnvelope
from forest.routing.table import Route


class RecordStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"

    @property
    def terminal(self) -> bool:
        return self in (RecordStatus.SUCCEEDED, RecordStatus.DEAD_LETTERED)


def record_key(event_id: str, binding_name: str) -> str:
    return f"{event_id}:{binding_name}"


@dataclass
class InFlightRecord:
    """Tracks one event's processing by one binding."""

    event: EventEnvelope
    route: Route
    attempts: int = 0
    status: RecordStatus = RecordStatus.PENDING
    last_reason: str = ""
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return record_key(self.event.id, self.route.binding.name)

    def transition(self, status: RecordStatus, reason: str = "") -> None:
        self.status = status
        if reason:
            self.last_reason = reason
        self.updated_at = time.time()
