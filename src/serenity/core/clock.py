"""
Clock — the only place the live session reads time or sleeps.

SystemClock wraps time.monotonic() and asyncio.sleep().
ManualClock never moves on its own: advance() moves time forward and wakes
every sleeper whose deadline has passed, in deadline order. Tests drive
minutes of schedule in microseconds with it.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod

# Event-loop passes given to woken coroutines after each deadline
_SETTLE_ROUNDS = 50


class Clock(ABC):
    @abstractmethod
    def monotonic(self) -> float:
        ...

    @abstractmethod
    async def sleep(self, delay: float) -> None:
        ...


class SystemClock(Clock):
    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))


class ManualClock(Clock):
    """Deterministic clock for tests."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    def monotonic(self) -> float:
        return self._now

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + delay, next(self._seq), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, f in self._sleepers if not f.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers one deadline at a time."""
        target = self._now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue  # sleeper was cancelled
            self._now = max(self._now, deadline)
            future.set_result(None)
            await self.settle()
        self._now = target
        await self.settle()

    @staticmethod
    async def settle() -> None:
        """Let ready coroutines run until they block again."""
        for _ in range(_SETTLE_ROUNDS):
            await asyncio.sleep(0)
