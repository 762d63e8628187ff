"""
Ephemeral Event Registry — intention words and light orbs with a TTL.

Events are visible the moment they are added and disappear once their TTL
has elapsed. Expiry is a predicate on the clock, not a scheduled deletion,
so there is no background sweeper and nothing to cancel. prune() only
reclaims memory; visibility never depends on it having run.

The light-orb TTL must cover the longest orb animation (8-13s): an orb is
never removed while it is still on screen.
"""

from __future__ import annotations

import logging
import random
import uuid
from typing import Any, Mapping

from serenity.core.clock import Clock, SystemClock
from serenity.core.config import EventsConfig
from serenity.core.metrics import metrics
from serenity.kernel.event_bus import StateBus
from serenity.live.models import EphemeralEvent, EventKind

logger = logging.getLogger(__name__)


class EphemeralEventRegistry:
    def __init__(
        self,
        settings: EventsConfig | None = None,
        clock: Clock | None = None,
        bus: StateBus | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings or EventsConfig()
        if self._settings.light_ttl < self._settings.light_max_duration:
            raise ValueError(
                f"light_ttl ({self._settings.light_ttl}s) must be at least the "
                f"longest orb animation ({self._settings.light_max_duration}s)"
            )
        self._clock = clock or SystemClock()
        self._bus = bus
        self._rng = rng or random.Random()
        self._events: dict[str, EphemeralEvent] = {}

    def ttl_for(self, kind: EventKind) -> float:
        if kind is EventKind.INTENTION:
            return self._settings.intention_ttl
        return self._settings.light_ttl

    def add(self, kind: EventKind, payload: Mapping[str, Any]) -> str:
        """Register an event and return its id. Visible immediately."""
        self.prune()
        event = EphemeralEvent(
            event_id=uuid.uuid4().hex,
            kind=kind,
            payload=dict(payload),
            created_at=self._clock.monotonic(),
            ttl=self.ttl_for(kind),
        )
        self._events[event.event_id] = event
        metrics.inc("events.added", labels={"kind": kind.value})
        if self._bus is not None:
            self._bus.publish("events.added", event)
        logger.debug("Ephemeral %s %s (ttl=%.0fs)", kind.value, event.event_id[:8], event.ttl)
        return event.event_id

    def add_intention(self, word: str) -> str:
        """Float a single word up the screen. Raises ValueError otherwise."""
        word = (word or "").strip()
        if not word or any(ch.isspace() for ch in word):
            raise ValueError("An intention must be a single word")
        return self.add(
            EventKind.INTENTION,
            {"text": word, "left_pct": round(10 + self._rng.random() * 80, 2)},
        )

    def send_light(self) -> str:
        """Launch a light orb with a random offset and animation duration."""
        low = self._settings.light_min_duration
        high = self._settings.light_max_duration
        return self.add(
            EventKind.LIGHT,
            {
                "left_pct": round(10 + self._rng.random() * 80, 2),
                "duration_s": round(self._rng.uniform(low, high), 2),
            },
        )

    def get(self, event_id: str) -> EphemeralEvent | None:
        """The event if it is still visible."""
        event = self._events.get(event_id)
        if event is None or not event.is_visible(self._clock.monotonic()):
            return None
        return event

    def visible(self) -> list[EphemeralEvent]:
        """Live events in creation order."""
        now = self._clock.monotonic()
        # Snapshot the values so concurrent add() calls can't disturb iteration
        return [e for e in list(self._events.values()) if e.is_visible(now)]

    def prune(self) -> int:
        """Drop expired events from memory. Returns how many were dropped."""
        now = self._clock.monotonic()
        expired = [eid for eid, e in list(self._events.items()) if not e.is_visible(now)]
        for eid in expired:
            self._events.pop(eid, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self.visible())
