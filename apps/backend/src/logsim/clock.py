"""Time sources for the engine.

Every suspension in the engine (chain step delays, step duration bounds,
scenario run-mode waits and the scheduler tick) goes through ``Clock.sleep``
so it can be cancelled with ``Task.cancel()`` and driven by ``ManualClock``
in tests.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock in a fixed timezone backed by ``asyncio.sleep``."""

    def __init__(self, tz: tzinfo = timezone.utc):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0))


class ManualClock:
    """Clock that only moves when ``advance`` is called.

    Sleepers park on a future keyed by their deadline; ``advance`` moves the
    time forward, resolves every due future and then yields to the event
    loop so woken tasks can run up to their next suspension point.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._sleepers: list[tuple[datetime, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut = asyncio.get_running_loop().create_future()
        entry = (self._now + timedelta(seconds=seconds), fut)
        self._sleepers.append(entry)
        try:
            await fut
        finally:
            self._sleepers.remove(entry)

    async def advance(self, seconds: float = 0) -> None:
        """Move time forward, waking sleepers in deadline order.

        Sleeps started by woken tasks are honoured within the same call, so
        advancing 10s across a 2s delay followed by a 5s wait wakes both.
        """
        target = self._now + timedelta(seconds=seconds)
        while True:
            due = [d for d, fut in self._sleepers if d <= target and not fut.done()]
            if not due:
                break
            self._now = max(self._now, min(due))
            for deadline, fut in list(self._sleepers):
                if deadline <= self._now and not fut.done():
                    fut.set_result(None)
            await settle()
        self._now = target
        await settle()


async def settle(rounds: int = 25) -> None:
    """Yield to the event loop enough times for woken tasks to make progress."""
    for _ in range(rounds):
        await asyncio.sleep(0)
