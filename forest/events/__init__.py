"""River: durable event stream, envelopes and subject syntax."""

from forest.events.models import EventEnvelope
from forest.events.river import JournalRiver, StreamAdapter
from forest.events.topics import SystemSubjects

__all__ = ["EventEnvelope", "JournalRiver", "StreamAdapter", "SystemSubjects"]
