"""
Periodic Task Scheduler — fixed-period repeating callbacks on the event loop.

Each entry runs in its own asyncio task:

    schedule() ──► [prime?] ──► sleep(period) ──► tick ──► sleep ──► tick ...

- Ticks are deadline based (start + n * period), so slow callbacks don't
  make the schedule drift.
- A callback that overruns one or more deadlines makes those ticks be
  skipped. Missed ticks are never replayed.
- A callback that raises is logged as a transient failure; the entry keeps
  ticking.
- Entries belong to a group. cancel_group() removes every entry of a group,
  which is how a new cycle clears the schedules bound to the old theme.

Also home of the rotation helper used for overlay positions.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from serenity.core.clock import Clock, SystemClock
from serenity.core.metrics import metrics
from serenity.live.models import ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

TickCallback = Callable[[], "Awaitable[Any] | Any"]

DEFAULT_GROUP = "default"


@dataclass(frozen=True)
class ScheduleHandle:
    task_id: str
    group: str
    token: int


@dataclass
class _Entry:
    handle: ScheduleHandle
    period: float
    callback: TickCallback
    task: asyncio.Task | None = None
    ticks: int = 0


def pick_excluding(
    candidates: Sequence[T], previous: T | None, rng: random.Random | None = None
) -> T:
    """Uniform choice among candidates other than previous.

    Falls back to the full set when excluding previous leaves nothing.
    """
    if not candidates:
        raise ValueError("pick_excluding() needs at least one candidate")
    pool = [c for c in candidates if c != previous] or list(candidates)
    return (rng or random).choice(pool)


class PeriodicTaskScheduler:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._entries: dict[int, _Entry] = {}
        self._tokens = itertools.count(1)
        self._unwinding: set[asyncio.Task] = set()

    # ─── Scheduling ───────────────────────────────────────────────

    def schedule(
        self,
        task_id: str,
        period: float,
        callback: TickCallback,
        group: str = DEFAULT_GROUP,
        prime: bool = False,
    ) -> ScheduleHandle:
        """Tick callback every period seconds, first tick one period from now.

        With prime=True the callback is also invoked once right away; a
        synchronous callback has run by the time schedule() returns.
        An existing entry with the same task_id in the same group is replaced.
        Must be called with a running event loop.
        """
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")

        for entry in list(self._entries.values()):
            if entry.handle.task_id == task_id and entry.handle.group == group:
                self.cancel(entry.handle)

        handle = ScheduleHandle(task_id=task_id, group=group, token=next(self._tokens))
        entry = _Entry(handle=handle, period=period, callback=callback)

        primed = None
        if prime:
            primed = self._call(entry)

        entry.task = asyncio.create_task(
            self._run(entry, primed), name=f"periodic-{group}-{task_id}"
        )
        self._entries[handle.token] = entry
        metrics.gauge_set("scheduler.entries", len(self._entries))
        logger.debug("Scheduled %s/%s every %.1fs", group, task_id, period)
        return handle

    def cancel(self, handle: ScheduleHandle) -> bool:
        entry = self._entries.pop(handle.token, None)
        if entry is None:
            return False
        if entry.task and not entry.task.done():
            entry.task.cancel()
            # Awaited by shutdown() even when cancelled earlier
            self._unwinding.add(entry.task)
            entry.task.add_done_callback(self._unwinding.discard)
        metrics.gauge_set("scheduler.entries", len(self._entries))
        return True

    def cancel_group(self, group: str) -> int:
        handles = [e.handle for e in self._entries.values() if e.handle.group == group]
        canceled = sum(1 for h in handles if self.cancel(h))
        if canceled:
            logger.debug("Canceled %d periodic tasks in group %s", canceled, group)
        return canceled

    def cancel_all(self) -> int:
        return sum(1 for h in [e.handle for e in self._entries.values()] if self.cancel(h))

    async def shutdown(self) -> None:
        """Cancel every entry and wait for all cancelled tasks to unwind,
        including those cancelled earlier by cancel() or cancel_group()."""
        self.cancel_all()
        current = asyncio.current_task()
        tasks = [t for t in self._unwinding if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ─── Introspection ────────────────────────────────────────────

    def active(self, group: str | None = None) -> list[str]:
        return [
            e.handle.task_id
            for e in self._entries.values()
            if group is None or e.handle.group == group
        ]

    def tick_count(self, handle: ScheduleHandle) -> int:
        entry = self._entries.get(handle.token)
        return entry.ticks if entry else 0

    # ─── Internal ─────────────────────────────────────────────────

    async def _run(self, entry: _Entry, primed: Awaitable[Any] | None) -> None:
        if primed is not None:
            await self._guard(entry, primed)

        period = entry.period
        next_at = self._clock.monotonic() + period
        while True:
            await self._clock.sleep(next_at - self._clock.monotonic())
            entry.ticks += 1
            metrics.inc("scheduler.ticks", labels={"task": entry.handle.task_id})
            result = self._call(entry)
            if result is not None:
                await self._guard(entry, result)

            next_at += period
            now = self._clock.monotonic()
            if next_at <= now:
                missed = int((now - next_at) // period) + 1
                next_at += missed * period
                metrics.inc(
                    "scheduler.skipped", missed, labels={"task": entry.handle.task_id}
                )
                logger.debug(
                    "Periodic task %s overran, skipped %d tick(s)",
                    entry.handle.task_id,
                    missed,
                )

    def _call(self, entry: _Entry) -> Awaitable[Any] | None:
        """Invoke the callback. Returns the awaitable if it produced one."""
        try:
            result = entry.callback()
        except Exception as e:
            self._transient(entry, e)
            return None
        return result if inspect.isawaitable(result) else None

    async def _guard(self, entry: _Entry, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception as e:
            self._transient(entry, e)

    @staticmethod
    def _transient(entry: _Entry, error: Exception) -> None:
        metrics.inc("scheduler.failures", labels={"task": entry.handle.task_id})
        logger.warning(
            "Periodic task %s failed, waiting for next tick: %s",
            entry.handle.task_id,
            error,
            extra={
                "task_id": entry.handle.task_id,
                "error_kind": ErrorKind.SCHEDULER_TRANSIENT.value,
            },
        )
