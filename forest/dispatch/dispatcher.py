"""Dispatcher: pull events from the River, run bindings, translate outcomes.

The Dispatcher is the only component that turns an Outcome into a retry,
an acknowledgement or a dead-letter. Per subject, events are served FIFO by
a bounded number of lane workers; distinct subjects run in parallel.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field

from forest.dispatch.dedup import DedupWindow
from forest.dispatch.records import InFlightRecord, RecordStatus, record_key
from forest.errors import PublishError
from forest.events.models import EventEnvelope
from forest.events.river import StreamAdapter
from forest.events.subjects import matches
from forest.events.topics import SystemSubjects
from forest.execution.outcome import Failed, Outcome, Published, Rejected, Timeout
from forest.routing.table import RoutingTableRef

logger = logging.getLogger(__name__)

DISPATCHER_SOURCE = "forest:dispatcher"


def compute_retry_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """Exponential backoff with jitter."""
    delay = min(base * (2**attempt), max_delay)
    jitter = random.uniform(0, delay * 0.3)
    return delay + jitter


@dataclass
class _Lane:
    """FIFO queue for one subject plus the workers serving it."""

    subject: str
    limit: int
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    workers: set[asyncio.Task] = field(default_factory=set)


class Dispatcher:
    """Consumes one consumer group of the River and dispatches to bindings."""

    def __init__(
        self,
        river: StreamAdapter,
        routing: RoutingTableRef,
        *,
        group: str = "forest",
        dedup: DedupWindow | None = None,
        subject_concurrency: int = 1,
        subject_limits: dict[str, int] | None = None,
        retry_base: float = 1.0,
        retry_max_delay: float = 60.0,
        max_hops: int = 16,
        visibility_timeout: float = 60.0,
        lane_idle_timeout: float = 30.0,
        max_in_flight: int = 1000,
    ) -> None:
        self._river = river
        self._routing = routing
        self.group = group
        self._dedup = dedup or DedupWindow()
        self._subject_concurrency = max(1, subject_concurrency)
        self._subject_limits = dict(subject_limits or {})
        self._retry_base = retry_base
        self._retry_max_delay = retry_max_delay
        self._max_hops = max_hops
        self._visibility_timeout = visibility_timeout
        self._lane_idle_timeout = lane_idle_timeout
        self._max_in_flight = max_in_flight
        self._capacity = asyncio.Semaphore(max_in_flight)
        self._lanes: dict[str, _Lane] = {}
        self._events: dict[str, list[InFlightRecord]] = {}
        self._keepalives: dict[str, asyncio.Task] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def dedup(self) -> DedupWindow:
        return self._dedup

    def in_flight(self) -> list[InFlightRecord]:
        """Snapshot of current records (read-only use)."""
        return [r for records in self._events.values() for r in records]

    def lane_count(self) -> int:
        return len(self._lanes)

    async def start(self) -> None:
        """Start the reader loop as an asyncio Task."""
        self._stopped = False
        self._capacity = asyncio.Semaphore(self._max_in_flight)
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.info("Dispatcher started for consumer group %s", self.group)

    async def stop(self) -> None:
        """Cancel reader and workers. Unacknowledged events are redelivered later."""
        self._stopped = True
        unfinished = self.in_flight()
        tasks: list[asyncio.Task] = []
        if self._reader_task:
            tasks.append(self._reader_task)
            self._reader_task = None
        for lane in self._lanes.values():
            tasks.extend(lane.workers)
        tasks.extend(self._keepalives.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._lanes.clear()
        self._keepalives.clear()
        self._events.clear()
        if unfinished:
            logger.info(
                "Dispatcher stopped, %d unfinished records left for redelivery", len(unfinished)
            )
        else:
            logger.info("Dispatcher stopped")

    async def _read_loop(self) -> None:
        """Pull deliveries and hand them to lanes. Restarts the subscription on error."""
        while not self._stopped:
            try:
                async for event in self._river.subscribe(">", self.group):
                    if self._stopped:
                        break
                    await self._capacity.acquire()
                    accepted = False
                    try:
                        accepted = await self._accept(event)
                    finally:
                        if not accepted:
                            self._capacity.release()
                if not self._stopped:
                    logger.info("Dispatcher: subscription for group %s ended", self.group)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Dispatcher: subscription failed, restarting: %s", e)
                await asyncio.sleep(self._retry_base)

    async def _accept(self, event: EventEnvelope) -> bool:
        """Create records and enqueue. Returns False when the event needs no work."""
        if event.id in self._events:
            logger.debug("Dispatcher: %s already in flight, ignoring redelivery", event.id)
            return False

        routes = self._routing.current.resolve(event.subject)
        if not routes:
            await self._river.ack(event.id, self.group)
            return False

        pending = []
        for route in routes:
            if await self._dedup.seen(record_key(event.id, route.binding.name)):
                continue
            pending.append(route)
        if not pending:
            logger.info(
                "Dispatcher: %s/%s already processed, acknowledging", event.subject, event.id
            )
            await self._river.ack(event.id, self.group)
            return False

        self._events[event.id] = [InFlightRecord(event, route) for route in pending]
        self._keepalives[event.id] = asyncio.create_task(self._keepalive(event.id))
        self._enqueue(event)
        return True

    def _limit_for(self, subject: str) -> int:
        for pattern, limit in self._subject_limits.items():
            if matches(pattern, subject):
                return max(1, int(limit))
        return self._subject_concurrency

    def _enqueue(self, event: EventEnvelope) -> None:
        lane = self._lanes.get(event.subject)
        if lane is None:
            lane = _Lane(subject=event.subject, limit=self._limit_for(event.subject))
            self._lanes[event.subject] = lane
        lane.queue.put_nowait(event)
        if len(lane.workers) < lane.limit:
            worker = asyncio.create_task(self._lane_worker(lane))
            lane.workers.add(worker)

    async def _lane_worker(self, lane: _Lane) -> None:
        current = asyncio.current_task()
        while not self._stopped:
            try:
                event = await asyncio.wait_for(lane.queue.get(), timeout=self._lane_idle_timeout)
            except asyncio.TimeoutError:
                if lane.queue.empty():
                    break
                continue
            try:
                await self._process(event)
            except Exception as e:
                logger.exception("Dispatcher: unexpected error processing %s: %s", event.id, e)
            finally:
                lane.queue.task_done()
        if current is not None:
            lane.workers.discard(current)
        if not lane.workers and lane.queue.empty() and self._lanes.get(lane.subject) is lane:
            del self._lanes[lane.subject]

    async def _keepalive(self, event_id: str) -> None:
        """Keep the delivery hidden from redelivery while it is queued or running."""
        interval = max(self._visibility_timeout / 3, 0.05)
        while True:
            await asyncio.sleep(interval)
            try:
                await self._river.extend(event_id, self.group, self._visibility_timeout)
            except Exception as e:
                logger.warning("Dispatcher: visibility keepalive failed for %s: %s", event_id, e)

    async def _process(self, event: EventEnvelope) -> None:
        """Run every record of the event independently, then ack once all are terminal."""
        records = self._events.get(event.id, [])
        results = await asyncio.gather(
            *(self._run_record(record) for record in records), return_exceptions=True
        )
        for record, result in zip(records, results):
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.error(
                    "Dispatcher: binding %s crashed on %s: %s",
                    record.route.binding.name,
                    event.id,
                    result,
                )
        try:
            if all(record.status.terminal for record in records):
                await self._river.ack(event.id, self.group)
        finally:
            self._finish(event.id)

    def _finish(self, event_id: str) -> None:
        self._events.pop(event_id, None)
        keepalive = self._keepalives.pop(event_id, None)
        if keepalive:
            keepalive.cancel()
        self._capacity.release()

    async def _execute(self, record: InFlightRecord) -> Outcome:
        try:
            return await record.route.executor.run(record.event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(
                "Dispatcher: executor for %s raised on %s", record.route.binding.name, record.event.id
            )
            return Failed(f"executor error: {e}")

    async def _run_record(self, record: InFlightRecord) -> None:
        """Drive one record to a terminal status: Succeeded or DeadLettered."""
        binding = record.route.binding
        while True:
            record.attempts += 1
            record.transition(RecordStatus.RUNNING)
            outcome = await self._execute(record)

            if isinstance(outcome, Published):
                over = [e for e in outcome.events if e.hops > self._max_hops]
                if over:
                    outcome = Rejected(
                        f"hop limit {self._max_hops} exceeded",
                        {"subjects": [e.subject for e in over]},
                    )
                else:
                    for derived in outcome.events:
                        await self._publish(derived)
                    record.transition(RecordStatus.SUCCEEDED)
                    await self._dedup.mark(record.key, RecordStatus.SUCCEEDED)
                    logger.info(
                        "Dispatcher: %s handled %s/%s, published %d event(s)",
                        binding.name,
                        record.event.subject,
                        record.event.id,
                        len(outcome.events),
                    )
                    return

            if isinstance(outcome, Rejected):
                await self._dead_letter(record, outcome.reason, outcome.detail)
                return

            reason = outcome.reason if isinstance(outcome, (Failed, Timeout)) else str(outcome)
            record.transition(RecordStatus.FAILED, reason)
            if record.attempts >= binding.max_attempts:
                await self._dead_letter(record, reason, {"timeout": isinstance(outcome, Timeout)})
                return
            delay = compute_retry_delay(record.attempts - 1, self._retry_base, self._retry_max_delay)
            logger.warning(
                "Dispatcher: retrying %s on %s in %.2fs (attempt %d/%d): %s",
                binding.name,
                record.event.id,
                delay,
                record.attempts,
                binding.max_attempts,
                reason,
            )
            await asyncio.sleep(delay)
            record.transition(RecordStatus.PENDING)

    async def _dead_letter(self, record: InFlightRecord, reason: str, detail: dict) -> None:
        binding = record.route.binding
        record.transition(RecordStatus.DEAD_LETTERED, reason)
        diagnostic = record.event.derive(
            SystemSubjects.DEAD_LETTER,
            {
                "original_event_id": record.event.id,
                "original_subject": record.event.subject,
                "binding": binding.name,
                "kind": binding.kind.value,
                "reason": reason,
                "attempts": record.attempts,
                "detail": detail,
            },
            DISPATCHER_SOURCE,
        )
        await self._publish(diagnostic)
        await self._dedup.mark(record.key, RecordStatus.DEAD_LETTERED)
        logger.error(
            "Dispatcher: dead-lettered %s/%s for %s after %d attempt(s): %s",
            record.event.subject,
            record.event.id,
            binding.name,
            record.attempts,
            reason,
        )

    async def _publish(self, event: EventEnvelope) -> None:
        """Publish, retrying with backoff until it succeeds. Never drops the event."""
        attempt = 0
        while True:
            try:
                await self._river.publish(event)
                return
            except PublishError as e:
                delay = compute_retry_delay(attempt, self._retry_base, self._retry_max_delay)
                attempt += 1
                logger.warning(
                    "Dispatcher: publish of %s/%s failed (attempt %d), retrying in %.2fs: %s",
                    event.subject,
                    event.id,
                    attempt,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
