"""SQLite journal storage for the River: events, consumer groups, deliveries."""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Callable

import aiosqlite

from forest.events.models import EventEnvelope

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS river_event (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    id              TEXT    NOT NULL UNIQUE,
    subject         TEXT    NOT NULL,
    payload         TEXT    NOT NULL,
    correlation_id  TEXT    NOT NULL,
    causation_id    TEXT,
    source          TEXT    NOT NULL DEFAULT '',
    hops            INTEGER NOT NULL DEFAULT 0,
    created_at      REAL    NOT NULL
);

CREATE TABLE IF NOT EXISTS river_group (
    name            TEXT    PRIMARY KEY,
    pattern         TEXT    NOT NULL,
    cursor          INTEGER NOT NULL DEFAULT 0,
    created_at      REAL    NOT NULL
);

CREATE TABLE IF NOT EXISTS river_delivery (
    group_name      TEXT    NOT NULL,
    event_id        TEXT    NOT NULL,
    event_seq       INTEGER NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'pending',
    delivery_count  INTEGER NOT NULL DEFAULT 0,
    visible_at      REAL    NOT NULL,
    acked_at        REAL,
    PRIMARY KEY (group_name, event_id)
);

CREATE INDEX IF NOT EXISTS idx_re_subject ON river_event(subject);
CREATE INDEX IF NOT EXISTS idx_re_correlation ON river_event(correlation_id);
CREATE INDEX IF NOT EXISTS idx_rd_claim ON river_delivery(group_name, status, visible_at, event_seq);
"""

_MATERIALIZE_BATCH = 500


def _row_to_envelope(row: tuple) -> EventEnvelope:
    """(id, subject, payload, correlation_id, causation_id, source, hops, created_at, delivery_count)."""
    payload = json.loads(row[2]) if isinstance(row[2], str) else row[2]
    return EventEnvelope(
        id=row[0],
        subject=row[1],
        payload=payload,
        correlation_id=row[3],
        causation_id=row[4],
        source=row[5],
        hops=row[6],
        timestamp=row[7],
        delivery_attempt=row[8],
    )


class RiverJournal:
    """SQLite-backed River journal. One connection per instance, calls serialized."""

    def __init__(self, db_path: Path, busy_timeout: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(str(self._db_path))
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute(f"PRAGMA busy_timeout={self._busy_timeout}")
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self._conn:
                await self._conn.close()
                self._conn = None

    async def insert(self, event: EventEnvelope) -> bool:
        """Append event to the stream. Returns False if the id was already stored."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO river_event
                    (id, subject, payload, correlation_id, causation_id, source, hops, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.subject,
                    json.dumps(event.payload, ensure_ascii=False, sort_keys=True),
                    event.correlation_id,
                    event.causation_id,
                    event.source,
                    event.hops,
                    event.timestamp,
                ),
            )
            await conn.commit()
            return (cursor.rowcount or 0) > 0

    async def ensure_group(self, group: str, pattern: str) -> None:
        """Register a consumer group. An existing group keeps its cursor."""
        async with self._lock:
            conn = await self._ensure_conn()
            await conn.execute(
                "INSERT OR IGNORE INTO river_group (name, pattern, cursor, created_at) "
                "VALUES (?, ?, 0, ?)",
                (group, pattern, time.time()),
            )
            await conn.commit()

    async def materialize(self, group: str, accept: Callable[[str], bool]) -> int:
        """Create delivery rows for events past the group's cursor. Returns count created."""
        async with self._lock:
            conn = await self._ensure_conn()
            now = time.time()
            try:
                await conn.execute("BEGIN IMMEDIATE")
                cursor = await conn.execute(
                    "SELECT cursor FROM river_group WHERE name = ?", (group,)
                )
                row = await cursor.fetchone()
                position = row[0] if row else 0
                cursor = await conn.execute(
                    "SELECT seq, id, subject FROM river_event WHERE seq > ? ORDER BY seq LIMIT ?",
                    (position, _MATERIALIZE_BATCH),
                )
                rows = await cursor.fetchall()
                created = 0
                for seq, event_id, subject in rows:
                    if not accept(subject):
                        continue
                    await conn.execute(
                        """
                        INSERT OR IGNORE INTO river_delivery
                            (group_name, event_id, event_seq, status, delivery_count, visible_at)
                        VALUES (?, ?, ?, 'pending', 0, ?)
                        """,
                        (group, event_id, seq, now),
                    )
                    created += 1
                if rows:
                    await conn.execute(
                        "UPDATE river_group SET cursor = ? WHERE name = ?",
                        (rows[-1][0], group),
                    )
                await conn.commit()
                return created
            except BaseException:
                await conn.rollback()
                raise

    async def claim(
        self, group: str, limit: int, visibility_timeout: float
    ) -> list[EventEnvelope]:
        """Atomically claim visible deliveries in stream order and hide them for visibility_timeout."""
        async with self._lock:
            conn = await self._ensure_conn()
            now = time.time()
            try:
                await conn.execute("BEGIN IMMEDIATE")
                cursor = await conn.execute(
                    """
                    SELECT e.id, e.subject, e.payload, e.correlation_id, e.causation_id,
                           e.source, e.hops, e.created_at, d.delivery_count + 1
                    FROM river_delivery d
                    JOIN river_event e ON e.seq = d.event_seq
                    WHERE d.group_name = ? AND d.status != 'acked' AND d.visible_at <= ?
                    ORDER BY d.event_seq
                    LIMIT ?
                    """,
                    (group, now, limit),
                )
                rows = await cursor.fetchall()
                ids = [row[0] for row in rows]
                if ids:
                    placeholders = ",".join("?" * len(ids))
                    await conn.execute(
                        f"UPDATE river_delivery SET status = 'inflight', "
                        f"delivery_count = delivery_count + 1, visible_at = ? "
                        f"WHERE group_name = ? AND event_id IN ({placeholders})",
                        [now + visibility_timeout, group, *ids],
                    )
                await conn.commit()
                return [_row_to_envelope(row) for row in rows]
            except BaseException:
                await conn.rollback()
                raise

    async def mark_acked(self, group: str, event_id: str) -> bool:
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                "UPDATE river_delivery SET status = 'acked', acked_at = ? "
                "WHERE group_name = ? AND event_id = ?",
                (time.time(), group, event_id),
            )
            await conn.commit()
            return (cursor.rowcount or 0) > 0

    async def mark_pending(self, group: str, event_id: str, delay: float) -> bool:
        """Make an unacked delivery visible again after delay seconds."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                "UPDATE river_delivery SET status = 'pending', visible_at = ? "
                "WHERE group_name = ? AND event_id = ? AND status != 'acked'",
                (time.time() + delay, group, event_id),
            )
            await conn.commit()
            return (cursor.rowcount or 0) > 0

    async def extend(self, group: str, event_id: str, seconds: float) -> bool:
        """Push back the visibility deadline of an in-flight delivery."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                "UPDATE river_delivery SET visible_at = ? "
                "WHERE group_name = ? AND event_id = ? AND status = 'inflight'",
                (time.time() + seconds, group, event_id),
            )
            await conn.commit()
            return (cursor.rowcount or 0) > 0

    async def reset_inflight(self, group: str) -> int:
        """Make every in-flight delivery of the group visible now. Used at startup recovery."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                "UPDATE river_delivery SET status = 'pending', visible_at = ? "
                "WHERE group_name = ? AND status = 'inflight'",
                (time.time(), group),
            )
            await conn.commit()
            return cursor.rowcount or 0

    async def delivery_status(self, group: str, event_id: str) -> tuple[str, int] | None:
        """Return (status, delivery_count) for one delivery, or None."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                "SELECT status, delivery_count FROM river_delivery "
                "WHERE group_name = ? AND event_id = ?",
                (group, event_id),
            )
            row = await cursor.fetchone()
            return (row[0], row[1]) if row else None

    async def fetch_by_subject(self, subject: str, limit: int = 100) -> list[EventEnvelope]:
        """Stored events with this exact subject, oldest first."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                """
                SELECT id, subject, payload, correlation_id, causation_id,
                       source, hops, created_at, 1
                FROM river_event WHERE subject = ? ORDER BY seq LIMIT ?
                """,
                (subject, limit),
            )
            rows = await cursor.fetchall()
            return [_row_to_envelope(row) for row in rows]
