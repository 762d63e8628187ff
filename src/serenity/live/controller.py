"""
Refresh Cycle Controller — drives the live channel.

Cycle lifecycle:

    request_refresh()                 (manual, or the refresh timer)
      │  new RefreshCycle(id=n, pending) published as in-flight
      ▼
    fetch_base_content() ── QuotaExceeded ──► settled-failed (quota)
      │                 └─ other error ────► settled-failed (generic)
      ▼
    coordinator.run()   visual ∥ audio, fan-in join
      ▼
    _settle()
      ├── session already stopped ─► release own media, discard
      └── otherwise: stamp the next settlement number, publish as current,
          release the previous cycle's media, rebind host-question /
          overlay / affirmation schedules

Cycles may overlap (a manual refresh while the timer's cycle is still
generating). Nothing is cancelled; whichever settles last becomes current,
even if it started first. Settlements are numbered in the order they happen.

All live state has a single owner here. Periodic callbacks get an immutable
ThemeBinding for the cycle they were scheduled for instead of reading
whatever happens to be current when they fire.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from dataclasses import dataclass
from functools import partial
from typing import Any

from serenity.core.clock import Clock, SystemClock
from serenity.core.config import LiveConfig
from serenity.core.logging import CycleTimer
from serenity.core.metrics import metrics
from serenity.kernel.event_bus import StateBus
from serenity.live.chat import ChatSessionManager
from serenity.live.coordinator import CycleContext, MediaGenerationCoordinator
from serenity.live.ephemeral import EphemeralEventRegistry
from serenity.live.models import (
    AffirmationState,
    CycleError,
    ErrorKind,
    OverlayState,
    RefreshCycle,
)
from serenity.live.scheduler import PeriodicTaskScheduler, pick_excluding
from serenity.providers.base import ContentService, QuotaExceeded

logger = logging.getLogger(__name__)

BASE_QUOTA_MESSAGE = (
    "Could not initialize the stream due to quota limits. "
    "Please try refreshing later."
)
BASE_FAILED_MESSAGE = (
    "Could not initialize the stream. The AI is busy. Please try refreshing."
)
WELCOME_TEMPLATE = '''Welcome to {channel}. Today's theme is "{theme}". Find your peace. ✨'''

REFRESH_GROUP = "refresh"
CONTENT_GROUP = "content"


@dataclass(frozen=True)
class ThemeBinding:
    """What a content-dependent periodic task needs from its cycle."""

    cycle_id: int
    theme: str
    affirmations: tuple[str, ...]


class RefreshCycleController:
    def __init__(
        self,
        service: ContentService,
        settings: LiveConfig | None = None,
        *,
        clock: Clock | None = None,
        bus: StateBus | None = None,
        scheduler: PeriodicTaskScheduler | None = None,
        chat: ChatSessionManager | None = None,
        events: EphemeralEventRegistry | None = None,
        coordinator: MediaGenerationCoordinator | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._service = service
        self._settings = settings or LiveConfig()
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()

        self.bus = bus or StateBus()
        self.scheduler = scheduler or PeriodicTaskScheduler(self._clock)
        self.chat = chat or ChatSessionManager(
            service, self.scheduler, self._settings, bus=self.bus, clock=self._clock
        )
        self.events = events or EphemeralEventRegistry(clock=self._clock, bus=self.bus)
        self.coordinator = coordinator or MediaGenerationCoordinator(service)

        self._cycle_ids = itertools.count(1)
        self._settlements = itertools.count(1)
        self._current: RefreshCycle | None = None
        self._in_flight: dict[int, RefreshCycle] = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._overlay = OverlayState(position=self._settings.overlay_positions[0])
        self._affirmation = AffirmationState()
        self._welcomed = False
        self._running = False

    # ─── Observable state ─────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current(self) -> RefreshCycle | None:
        return self._current

    @property
    def overlay(self) -> OverlayState:
        return self._overlay

    @property
    def affirmation(self) -> AffirmationState:
        return self._affirmation

    @property
    def is_refreshing(self) -> bool:
        return bool(self._in_flight)

    @property
    def in_flight(self) -> list[RefreshCycle]:
        return [self._in_flight[cid] for cid in sorted(self._in_flight)]

    @property
    def visual_progress(self) -> int:
        """Progress of the newest in-flight cycle's visual task."""
        if not self._in_flight:
            return 0
        return self._in_flight[max(self._in_flight)].visual.progress

    def snapshot(self) -> dict[str, Any]:
        current = self._current
        return {
            "running": self._running,
            "is_refreshing": self.is_refreshing,
            "cycle": current.to_dict() if current else None,
            "in_flight": [c.to_dict() for c in self.in_flight],
            "visual_progress": self.visual_progress,
            "overlay": self._overlay.to_dict(),
            "affirmation": self._affirmation.to_dict(),
            "summary": self.chat.summary.to_dict(),
            "message_count": len(self.chat.messages),
            "events": [e.to_dict() for e in self.events.visible()],
        }

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> int:
        """Start the first cycle and arm the refresh timer."""
        if self._running:
            raise RuntimeError("Live session already running")
        self._running = True
        self.chat.start()
        self.scheduler.schedule(
            "refresh",
            self._settings.refresh_interval,
            self._on_refresh_tick,
            group=REFRESH_GROUP,
        )
        logger.info(
            "Live session started (refresh every %.0fs)", self._settings.refresh_interval
        )
        return self.request_refresh()

    def request_refresh(self) -> int:
        """Start a new cycle now. Returns its id."""
        if not self._running:
            raise RuntimeError("Live session is not running")

        cycle = RefreshCycle(
            cycle_id=next(self._cycle_ids), started_at=self._clock.monotonic()
        )
        self._in_flight[cycle.cycle_id] = cycle
        self.bus.publish("live.cycle", cycle)

        task = asyncio.create_task(self._run_cycle(cycle), name=f"cycle-{cycle.cycle_id}")
        self._tasks[cycle.cycle_id] = task
        task.add_done_callback(partial(self._forget_task, cycle.cycle_id))

        metrics.inc("cycles.started")
        metrics.gauge_set("cycles.in_flight", len(self._in_flight))
        logger.info("Cycle %d started", cycle.cycle_id, extra={"cycle_id": cycle.cycle_id})
        return cycle.cycle_id

    async def drain(self) -> None:
        """Wait until no cycle task is left running."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel timers and in-flight cycles, then release every media handle."""
        if not self._running:
            return
        self._running = False

        # Every periodic task, chat summary included, has unwound after this
        await self.scheduler.shutdown()

        for task in self._tasks.values():
            task.cancel()
        await self.drain()
        self._in_flight.clear()

        await self.chat.stop()
        released = self.coordinator.release_all()
        metrics.gauge_set("cycles.in_flight", 0)
        self.bus.close()
        logger.info("Live session stopped (%d media handle(s) released)", released)

    # ─── Cycle ────────────────────────────────────────────────────

    def _on_refresh_tick(self) -> None:
        self.request_refresh()

    def _forget_task(self, cycle_id: int, _task: asyncio.Task) -> None:
        self._tasks.pop(cycle_id, None)

    async def _run_cycle(self, cycle: RefreshCycle) -> None:
        cid = cycle.cycle_id
        timer = CycleTimer()
        try:
            content = await self._service.fetch_base_content()
        except QuotaExceeded as e:
            logger.warning("Cycle %d: base content quota exceeded: %s", cid, e)
            error = CycleError(ErrorKind.QUOTA_EXCEEDED, BASE_QUOTA_MESSAGE)
            self._settle(cycle.failed(error, self._clock.monotonic()), timer)
            return
        except Exception as e:
            logger.warning("Cycle %d: base content failed: %s", cid, e)
            error = CycleError(ErrorKind.GENERATION_FAILED, BASE_FAILED_MESSAGE)
            self._settle(cycle.failed(error, self._clock.monotonic()), timer)
            return
        timer.mark("content")

        cycle = cycle.with_content(content)
        self._in_flight[cid] = cycle
        self.bus.publish("live.cycle", cycle)

        outcome = await self.coordinator.run(
            CycleContext(cid, content, on_progress=partial(self._on_progress, cid))
        )
        timer.mark("media")
        self._settle(cycle.settled(outcome, self._clock.monotonic()), timer)

    def _on_progress(self, cycle_id: int, value: int) -> None:
        cycle = self._in_flight.get(cycle_id)
        if cycle is None:
            return
        cycle = cycle.with_visual_progress(value)
        self._in_flight[cycle_id] = cycle
        self.bus.publish(
            "live.progress", {"cycle_id": cycle_id, "progress": cycle.visual.progress}
        )

    def _settle(self, cycle: RefreshCycle, timer: CycleTimer) -> bool:
        """Make cycle current; the latest settlement always wins.

        Returns False if the session was stopped first. The cycle's media is
        then released and nothing visible changes.
        """
        cid = cycle.cycle_id
        self._in_flight.pop(cid, None)
        metrics.gauge_set("cycles.in_flight", len(self._in_flight))
        metrics.inc("cycles.settled", labels={"status": cycle.status.value})
        metrics.observe("cycles.duration_ms", timer.total_ms())

        if not self._running:
            self.coordinator.release_cycle(cid)
            metrics.inc("cycles.discarded")
            logger.info(
                "Cycle %d settled after stop; discarded",
                cid,
                extra={"cycle_id": cid, "status": cycle.status.value},
            )
            return False

        cycle = cycle.stamped(next(self._settlements))
        previous = self._current
        self._current = cycle
        if previous is not None:
            self.coordinator.release_cycle(previous.cycle_id)
        self.bus.publish("live.cycle", cycle)

        if cycle.content is not None:
            self._bind_content(cycle)
        else:
            self.scheduler.cancel_group(CONTENT_GROUP)
            self._set_affirmation(AffirmationState(version=self._affirmation.version + 1))

        log = logger.warning if cycle.error else logger.info
        log(
            "Cycle %d %s, settlement %d (%s)",
            cid,
            cycle.status.value,
            cycle.settlement,
            timer.summary(),
            extra={
                "cycle_id": cid,
                "status": cycle.status.value,
                "duration_ms": round(timer.total_ms()),
                "error_kind": cycle.error.kind.value if cycle.error else None,
            },
        )
        return True

    # ─── Content-dependent schedules ──────────────────────────────

    def _bind_content(self, cycle: RefreshCycle) -> None:
        content = cycle.content
        assert content is not None
        binding = ThemeBinding(cycle.cycle_id, content.theme, content.affirmations)

        self.scheduler.cancel_group(CONTENT_GROUP)
        self._set_overlay(
            OverlayState(
                version=self._overlay.version + 1,
                position=self._overlay.position,
            )
        )
        self._affirmation = AffirmationState(version=self._affirmation.version)

        if not self._welcomed:
            self._welcomed = True
            self.chat.append_ai(
                WELCOME_TEMPLATE.format(
                    channel=self._settings.channel_name, theme=content.theme
                )
            )

        self.scheduler.schedule(
            "host-question",
            self._settings.host_interval,
            partial(self._host_tick, binding),
            group=CONTENT_GROUP,
        )
        self.scheduler.schedule(
            "dynamic-overlay",
            self._settings.overlay_interval,
            partial(self._overlay_tick, binding),
            group=CONTENT_GROUP,
        )
        if binding.affirmations:
            self.scheduler.schedule(
                "affirmations",
                self._settings.affirmation_interval,
                partial(self._affirmation_tick, binding),
                group=CONTENT_GROUP,
                prime=True,
            )
        else:
            self._set_affirmation(AffirmationState(version=self._affirmation.version + 1))

    async def _host_tick(self, binding: ThemeBinding) -> None:
        await self.chat.interject(binding.theme)

    async def _overlay_tick(self, binding: ThemeBinding) -> None:
        quote = await self._service.generate_overlay_quote(binding.theme)
        if not quote:
            return
        position = pick_excluding(
            self._settings.overlay_positions, self._overlay.position, self._rng
        )
        self._set_overlay(
            OverlayState(text=quote, version=self._overlay.version + 1, position=position)
        )

    def _affirmation_tick(self, binding: ThemeBinding) -> None:
        index = (self._affirmation.index + 1) % len(binding.affirmations)
        self._set_affirmation(
            AffirmationState(
                text=binding.affirmations[index],
                index=index,
                version=self._affirmation.version + 1,
            )
        )

    def _set_overlay(self, overlay: OverlayState) -> None:
        self._overlay = overlay
        self.bus.publish("live.overlay", overlay)

    def _set_affirmation(self, affirmation: AffirmationState) -> None:
        self._affirmation = affirmation
        self.bus.publish("live.affirmation", affirmation)
