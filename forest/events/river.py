"""Stream Adapter: subscribe/publish/ack against the River.

The journal owns durability; the adapter only claims, hides and acknowledges
deliveries. Delivery is at-least-once per consumer group: an unacknowledged
delivery becomes visible again after the visibility timeout.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import AsyncIterator, Protocol, runtime_checkable

from forest.errors import PublishError
from forest.events.journal import RiverJournal
from forest.events.models import EventEnvelope
from forest.events.subjects import matches

logger = logging.getLogger(__name__)


@runtime_checkable
class StreamAdapter(Protocol):
    """Contract the Dispatcher depends on. Any broker client can implement it."""

    async def publish(self, event: EventEnvelope) -> None: ...

    def subscribe(self, pattern: str, group: str) -> AsyncIterator[EventEnvelope]: ...

    async def ack(self, event_id: str, group: str) -> None: ...

    async def nack(self, event_id: str, group: str, redeliver_after: float = 0.0) -> None: ...

    async def extend(self, event_id: str, group: str, seconds: float) -> None: ...


class JournalRiver:
    """Durable River on top of the SQLite journal."""

    def __init__(
        self,
        db_path: Path,
        poll_interval: float = 1.0,
        batch_size: int = 16,
        visibility_timeout: float = 60.0,
        busy_timeout: int = 5000,
    ) -> None:
        self._journal = RiverJournal(db_path, busy_timeout=busy_timeout)
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self.visibility_timeout = visibility_timeout
        self._wake = asyncio.Event()
        self._closed = False

    @property
    def journal(self) -> RiverJournal:
        return self._journal

    async def publish(self, event: EventEnvelope) -> None:
        """Append event to the River. Re-publishing a known id is a no-op."""
        try:
            stored = await self._journal.insert(event)
        except (sqlite3.Error, OSError) as e:
            raise PublishError(f"failed to publish {event.subject}/{event.id}: {e}") from e
        if not stored:
            logger.debug("River: duplicate publish ignored for %s", event.id)
        self._wake.set()

    async def recover(self, group: str) -> int:
        """Call once at startup. In-flight deliveries of a crashed run become visible."""
        count = await self._journal.reset_inflight(group)
        if count:
            logger.info("River: recovered %d in-flight deliveries for group %s", count, group)
        return count

    async def subscribe(self, pattern: str, group: str) -> AsyncIterator[EventEnvelope]:
        """Infinite, restartable sequence of deliveries for the group, in stream order."""
        await self._journal.ensure_group(group, pattern)
        accept = lambda subject: matches(pattern, subject)
        while not self._closed:
            await self._journal.materialize(group, accept)
            events = await self._journal.claim(
                group, limit=self._batch_size, visibility_timeout=self.visibility_timeout
            )
            if events:
                for event in events:
                    yield event
                continue
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    async def ack(self, event_id: str, group: str) -> None:
        await self._journal.mark_acked(group, event_id)

    async def nack(self, event_id: str, group: str, redeliver_after: float = 0.0) -> None:
        await self._journal.mark_pending(group, event_id, redeliver_after)
        if redeliver_after <= 0:
            self._wake.set()

    async def extend(self, event_id: str, group: str, seconds: float) -> None:
        await self._journal.extend(group, event_id, seconds)

    async def close(self) -> None:
        self._closed = True
        self._wake.set()
        await self._journal.close()
