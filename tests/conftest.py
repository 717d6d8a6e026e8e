"""Shared fixtures: temporary River and a polling wait helper."""

import asyncio
import time
from pathlib import Path
from typing import Awaitable, Callable

import pytest

from forest.events.river import JournalRiver


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "river.db"


@pytest.fixture
async def river(db_path: Path) -> JournalRiver:
    r = JournalRiver(db_path=db_path, poll_interval=0.05, batch_size=8, visibility_timeout=5.0)
    yield r
    await r.close()


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll an async or sync predicate until it is truthy, or fail after timeout."""

    async def _wait(predicate: Callable, timeout: float = 5.0, interval: float = 0.02) -> None:
        deadline = time.monotonic() + timeout
        while True:
            result = predicate()
            if asyncio.iscoroutine(result):
                result = await result
            if result:
                return
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait
