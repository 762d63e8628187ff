"""Shared fixtures: a scriptable ContentService and a manually driven clock."""

from __future__ import annotations

import asyncio
import random
from collections import defaultdict
from typing import Sequence

import pytest

from serenity.core.clock import ManualClock
from serenity.core.config import EventsConfig, LiveConfig
from serenity.core.metrics import metrics
from serenity.kernel.event_bus import StateBus
from serenity.live.chat import ChatSessionManager
from serenity.live.coordinator import MediaGenerationCoordinator
from serenity.live.controller import RefreshCycleController
from serenity.live.ephemeral import EphemeralEventRegistry
from serenity.live.models import BaseContent, ChatMessage
from serenity.live.scheduler import PeriodicTaskScheduler
from serenity.providers.base import ContentService, MediaHandle


DEFAULT_AFFIRMATIONS = ("I am calm.", "I am here.", "I breathe.")


def make_content(
    theme: str = "Stillness", affirmations: Sequence[str] = DEFAULT_AFFIRMATIONS
) -> BaseContent:
    return BaseContent(
        theme=theme,
        overlay_quote=f"{theme} is a doorway.",
        audio_prompt=f"Breathe into {theme.lower()}.",
        affirmations=tuple(affirmations),
        video_prompt=f"Slow drifting light, {theme.lower()}",
    )


class FakeContentService(ContentService):
    """
    In-memory ContentService.

    Each *_results list is consumed front to back, one item per call; an
    item is either the value to return or an exception to raise. When a
    list runs dry a sensible default is returned. A gate (asyncio.Event)
    queued in visual_gates holds that visual call until it is set.
    """

    def __init__(self) -> None:
        self.content_results: list = []
        self.visual_results: list = []
        self.audio_results: list = []
        self.visual_gates: list[asyncio.Event | None] = []
        self.progress_steps: tuple[int, ...] = (0, 10, 50, 90, 95, 100)
        self.reply_results: list = []
        self.host_questions: list = []
        self.quotes: list = []
        self.summaries: list = []
        self.calls: dict[str, int] = defaultdict(int)
        self.summarized: list[list[ChatMessage]] = []
        self.handles: list[MediaHandle] = []
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def fetch_base_content(self) -> BaseContent:
        self.calls["content"] += 1
        await asyncio.sleep(0)
        return self._next(self.content_results, make_content())

    async def generate_visual(self, prompt, theme, on_progress) -> MediaHandle:
        self.calls["visual"] += 1
        gate = self.visual_gates.pop(0) if self.visual_gates else None
        for step in self.progress_steps[:-1]:
            on_progress(step)
        if gate is not None:
            await gate.wait()
        result = self._next(self.visual_results, None)
        if self.progress_steps:
            on_progress(self.progress_steps[-1])
        return result or self._handle("visual")

    async def generate_audio(self, prompt, theme) -> MediaHandle:
        self.calls["audio"] += 1
        await asyncio.sleep(0)
        return self._next(self.audio_results, None) or self._handle("audio")

    async def generate_chat_reply(self, history, context):
        self.calls["reply"] += 1
        await asyncio.sleep(0)
        return self._next(self.reply_results, "Thank you for sharing.")

    async def generate_host_question(self, theme):
        self.calls["host"] += 1
        return self._next(self.host_questions, f"What does {theme} mean to you?")

    async def generate_overlay_quote(self, theme):
        self.calls["quote"] += 1
        return self._next(self.quotes, f"A new thought on {theme}.")

    async def summarize(self, history):
        self.calls["summary"] += 1
        self.summarized.append(list(history))
        return self._next(self.summaries, "Community Reflection: the room is calm.")

    def _handle(self, kind: str) -> MediaHandle:
        handle = MediaHandle(kind=kind, path=None)
        self.handles.append(handle)
        return handle

    @staticmethod
    def _next(results: list, default):
        if not results:
            return default
        item = results.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def service():
    return FakeContentService()


@pytest.fixture
def live_settings():
    return LiveConfig()


@pytest.fixture
def build_controller(service, clock, live_settings):
    """Factory for a controller wired to the fake service and manual clock."""

    def _build(settings: LiveConfig | None = None, seed: int = 7) -> RefreshCycleController:
        settings = settings or live_settings
        bus = StateBus()
        scheduler = PeriodicTaskScheduler(clock)
        return RefreshCycleController(
            service,
            settings,
            clock=clock,
            bus=bus,
            scheduler=scheduler,
            chat=ChatSessionManager(service, scheduler, settings, bus=bus, clock=clock),
            events=EphemeralEventRegistry(EventsConfig(), clock=clock, bus=bus),
            coordinator=MediaGenerationCoordinator(service),
            rng=random.Random(seed),
        )

    return _build
