"""Deduplication window: bounded, time-evicted memory of terminal records."""

import asyncio
import time
from collections import OrderedDict
from typing import Callable

from forest.dispatch.records import RecordStatus


class DedupWindow:
    """Remembers terminal statuses by key for ttl seconds, at most max_entries keys.

    Bounded history means a redelivery older than the window is executed
    again; the window trades memory for the accepted duplicate horizon.
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        max_entries: int = 100_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, RecordStatus]] = OrderedDict()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        while self._entries:
            key, (stamp, _) = next(iter(self._entries.items()))
            if now - stamp < self._ttl and len(self._entries) <= self._max_entries:
                break
            del self._entries[key]

    async def mark(self, key: str, status: RecordStatus) -> None:
        async with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            self._entries[key] = (now, status)
            self._evict(now)

    async def get(self, key: str) -> RecordStatus | None:
        async with self._lock:
            self._evict(self._clock())
            entry = self._entries.get(key)
            return entry[1] if entry else None

    async def seen(self, key: str) -> bool:
        return await self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
