"""Executor contract and the shared output -> outbound events step."""

from typing import Any, Protocol, runtime_checkable

from forest.events.models import EventEnvelope
from forest.events.subjects import render_subject
from forest.execution.outcome import Outcome, Published, Rejected


@runtime_checkable
class Executor(Protocol):
    """Runs one binding's handler against one event. Never raises."""

    kind: str

    async def run(self, event: EventEnvelope) -> Outcome: ...


def emit_outputs(
    parent: EventEnvelope,
    publishes: str,
    outputs: list[dict[str, Any]],
    source: str,
) -> Outcome:
    """Turn handler outputs into derived envelopes using the publishes template.

    A template field missing from an output, or holding a value that cannot
    form a subject token, makes the whole result Rejected:
    nothing is published partially.
    """
    events: list[EventEnvelope] = []
    for output in outputs:
        try:
            subject = render_subject(publishes, output)
        except KeyError as e:
            return Rejected(
                f"output has no usable value for field {e.args[0]!r} in subject {publishes!r}",
                {"output": output},
            )
        events.append(parent.derive(subject, output, source))
    return Published(tuple(events))
