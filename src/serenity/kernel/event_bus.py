"""
State Bus — in-process pub/sub for newly published live state.

The live session is the only publisher. Observers (the SSE endpoint, tests)
subscribe to one or more topics, or to everything, and each gets its own
bounded asyncio.Queue so a slow reader never blocks the session.

Topics:
    live.cycle        — a RefreshCycle was started or settled
    live.progress     — visual generation progress for the in-flight cycle
    live.overlay      — a new OverlayState
    live.affirmation  — a new AffirmationState
    chat.message      — a ChatMessage was appended
    chat.summary      — a new ChatSummary
    events.added      — an EphemeralEvent was created

publish() is synchronous: state owners call it from plain methods.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator

logger = logging.getLogger(__name__)

_STREAM_END = object()
ALL_TOPICS = "*"


@dataclass(frozen=True)
class BusEvent:
    topic: str
    payload: Any


class StateBus:
    def __init__(self, maxsize: int = 256) -> None:
        self._maxsize = maxsize
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def publish(self, topic: str, payload: Any) -> int:
        """Deliver to topic and wildcard subscribers. Returns delivery count."""
        event = BusEvent(topic=topic, payload=payload)
        delivered = 0
        for queue in self._subscribers.get(topic, []) + self._subscribers.get(
            ALL_TOPICS, []
        ):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("State bus: subscriber full on %s, dropping", topic)
        return delivered

    def subscribe(self, *topics: str) -> asyncio.Queue:
        """Subscribe to the given topics, or to every topic if none given."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        for topic in topics or (ALL_TOPICS,):
            self._subscribers.setdefault(topic, []).append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        """Remove a queue from every topic. Safe to call twice."""
        for topic in list(self._subscribers):
            queues = self._subscribers[topic]
            if queue in queues:
                queues.remove(queue)
            if not queues:
                del self._subscribers[topic]

    async def listen(
        self, queue: asyncio.Queue, idle_timeout: float | None = None
    ) -> AsyncGenerator[BusEvent | None, None]:
        """
        Yield events until close() is called.

        With idle_timeout set, yields None whenever nothing arrived for that
        long, so streaming callers can send keep-alives.
        """
        while True:
            try:
                item = await asyncio.wait_for(queue.get(), idle_timeout)
            except asyncio.TimeoutError:
                yield None
                continue
            if item is _STREAM_END:
                break
            yield item

    def close(self) -> None:
        """End every subscriber's stream and drop all subscriptions."""
        seen: set[int] = set()
        for queues in self._subscribers.values():
            for queue in queues:
                if id(queue) in seen:
                    continue
                seen.add(id(queue))
                if queue.full():
                    # The end marker must arrive; drop the oldest pending event
                    queue.get_nowait()
                    logger.warning("State bus: subscriber full at close, dropped oldest event")
                queue.put_nowait(_STREAM_END)
        self._subscribers.clear()

    def subscriber_count(self, topic: str = ALL_TOPICS) -> int:
        return len(self._subscribers.get(topic, []))
