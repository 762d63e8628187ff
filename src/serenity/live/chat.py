"""
Chat Session Manager — the live channel's append-only chat log.

Four sources write to the log and may interleave freely:

    append_user()    — a viewer's message; also asks the service for a reply
    reply task       — the AI's answer, appended when it arrives
    interject()      — the host's periodic question (host-question cadence)
    append_ai/system — controller announcements

Every message gets the next sequence number at the moment it is appended,
so sequence order is append order no matter which source wrote it.

Summarization runs on its own cadence: when more than a few non-system
messages exist, the most recent window is summarized and the ChatSummary
is replaced wholesale.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING

from serenity.core.clock import Clock, SystemClock
from serenity.core.config import LiveConfig
from serenity.core.metrics import metrics
from serenity.live.models import ChatMessage, ChatSummary, Sender
from serenity.live.scheduler import PeriodicTaskScheduler

if TYPE_CHECKING:
    from serenity.kernel.event_bus import StateBus
    from serenity.providers.base import ContentService

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm here to listen. Feel free to share more."

CHAT_GROUP = "chat"
SUMMARY_TASK = "chat-summary"


class ChatSessionManager:
    def __init__(
        self,
        service: "ContentService",
        scheduler: PeriodicTaskScheduler,
        settings: LiveConfig | None = None,
        bus: "StateBus | None" = None,
        clock: Clock | None = None,
    ) -> None:
        self._service = service
        self._scheduler = scheduler
        self._settings = settings or LiveConfig()
        self._bus = bus
        self._clock = clock or SystemClock()
        self._messages: list[ChatMessage] = []
        self._sequence = itertools.count(1)
        self._summary = ChatSummary()
        self._replies: set[asyncio.Task] = set()

    # ─── Read side ────────────────────────────────────────────────

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def summary(self) -> ChatSummary:
        return self._summary

    @property
    def pending_replies(self) -> int:
        return len(self._replies)

    def history(self) -> list[ChatMessage]:
        """Messages a model should see: everything but system notices."""
        return [m for m in self._messages if m.sender is not Sender.SYSTEM]

    # ─── Lifecycle ────────────────────────────────────────────────

    def start(self) -> None:
        self._scheduler.schedule(
            SUMMARY_TASK,
            self._settings.summary_interval,
            self.summarize_tick,
            group=CHAT_GROUP,
        )

    async def stop(self) -> None:
        self._scheduler.cancel_group(CHAT_GROUP)
        replies = list(self._replies)
        for task in replies:
            task.cancel()
        if replies:
            await asyncio.gather(*replies, return_exceptions=True)
        self._replies.clear()

    # ─── Write side ───────────────────────────────────────────────

    def append_user(self, text: str) -> ChatMessage:
        """Append a viewer message and request a reply in the background."""
        text = (text or "").strip()
        if not text:
            raise ValueError("Chat message is empty")

        message = self._append(Sender.USER, text)
        task = asyncio.create_task(
            self._reply(self.history()), name=f"chat-reply-{message.sequence}"
        )
        self._replies.add(task)
        task.add_done_callback(self._replies.discard)
        return message

    def append_ai(self, text: str) -> ChatMessage:
        return self._append(Sender.AI, text)

    def append_system(self, text: str) -> ChatMessage:
        return self._append(Sender.SYSTEM, text)

    async def interject(self, theme: str) -> ChatMessage | None:
        """Host-question tick: post a reflective question if one comes back."""
        if not theme:
            return None
        question = await self._service.generate_host_question(theme)
        if not question:
            return None
        return self._append(Sender.AI, question)

    async def summarize_tick(self) -> ChatSummary | None:
        """Summary tick: replace the summary from the most recent messages."""
        history = self.history()
        if len(history) <= self._settings.summary_min_messages:
            return None

        recent = history[-self._settings.summary_window :]
        text = await self._service.summarize(recent)
        if not text:
            return None

        self._summary = ChatSummary(text=text, version=self._summary.version + 1)
        metrics.inc("chat.summaries")
        if self._bus is not None:
            self._bus.publish("chat.summary", self._summary)
        logger.debug("Chat summary v%d from %d messages", self._summary.version, len(recent))
        return self._summary

    # ─── Internal ─────────────────────────────────────────────────

    def _append(self, sender: Sender, text: str) -> ChatMessage:
        message = ChatMessage(
            sender=sender,
            text=text,
            sequence=next(self._sequence),
            created_at=self._clock.monotonic(),
        )
        self._messages.append(message)
        metrics.inc("chat.messages", labels={"sender": sender.value})
        if self._bus is not None:
            self._bus.publish("chat.message", message)
        return message

    async def _reply(self, history: list[ChatMessage]) -> None:
        try:
            text = await self._service.generate_chat_reply(
                history, self._settings.channel_name
            )
        except Exception as e:
            logger.warning("Chat reply failed, using fallback: %s", e)
            text = None
        self._append(Sender.AI, text or FALLBACK_REPLY)
