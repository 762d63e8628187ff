"""
Media Generation Coordinator — the two long-running tasks of one cycle.

    run(context)
      ├── visual: generate_visual(prompt, theme, on_progress) ─┐
      └── audio:  generate_audio(audio_prompt, theme) ─────────┤ fan-in join
                                                               ▼
                                                      classify_outcome()

Neither task cancels the other; the cycle settles only when both are done.
The visual task decides the cycle status. Audio is a soft enhancement: its
failure degrades the cycle, never fails it.

The coordinator also owns every media handle it obtained, per cycle, until
the controller asks for them to be released.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable

from serenity.core.metrics import metrics
from serenity.live.models import (
    BaseContent,
    CycleError,
    CycleOutcome,
    CycleStatus,
    ErrorKind,
    MediaKind,
    MediaTask,
    TaskOutcome,
)
from serenity.providers.base import (
    ContentService,
    MediaHandle,
    ProgressCallback,
    QuotaExceeded,
)

logger = logging.getLogger(__name__)

VISUAL_QUOTA_MESSAGE = (
    "The stream visuals could not be generated due to quota limits. "
    "Please try refreshing later."
)
VISUAL_FAILED_MESSAGE = (
    "There was an issue generating the stream visuals. Please try refreshing."
)

VISUAL_PROMPT_TEMPLATE = (
    "Theme: {theme}. Reflection: {quote}. "
    "The visuals should evoke feelings related to this theme."
)


@dataclass(frozen=True)
class CycleContext:
    cycle_id: int
    content: BaseContent
    on_progress: ProgressCallback | None = None


def build_visual_prompt(content: BaseContent) -> str:
    if content.video_prompt:
        return content.video_prompt
    return VISUAL_PROMPT_TEMPLATE.format(
        theme=content.theme, quote=content.overlay_quote
    )


def classify_outcome(visual: MediaTask, audio: MediaTask) -> CycleOutcome:
    """Cycle status from the two terminal tasks. Visual always decides."""
    if visual.outcome is TaskOutcome.QUOTA_EXCEEDED:
        error = CycleError(ErrorKind.QUOTA_EXCEEDED, VISUAL_QUOTA_MESSAGE)
        return CycleOutcome(CycleStatus.FAILED, visual, audio, error)
    if visual.outcome is not TaskOutcome.OK:
        error = CycleError(ErrorKind.GENERATION_FAILED, VISUAL_FAILED_MESSAGE)
        return CycleOutcome(CycleStatus.FAILED, visual, audio, error)
    if audio.outcome is not TaskOutcome.OK:
        return CycleOutcome(CycleStatus.DEGRADED, visual, audio)
    return CycleOutcome(CycleStatus.OK, visual, audio)


class MediaGenerationCoordinator:
    def __init__(self, service: ContentService) -> None:
        self._service = service
        self._held: dict[int, list[MediaHandle]] = defaultdict(list)

    async def run(self, context: CycleContext) -> CycleOutcome:
        content = context.content
        reported: list[int] = []

        def forward(value: int) -> None:
            reported.append(value)
            if context.on_progress is None:
                return
            try:
                context.on_progress(value)
            except Exception as e:
                logger.warning("Progress observer failed: %s", e)

        visual, audio = await asyncio.gather(
            self._run_task(
                context.cycle_id,
                MediaTask(MediaKind.VISUAL),
                self._service.generate_visual(
                    build_visual_prompt(content), content.theme, forward
                ),
            ),
            self._run_task(
                context.cycle_id,
                MediaTask(MediaKind.AUDIO),
                self._service.generate_audio(content.audio_prompt, content.theme),
            ),
        )
        if reported:
            visual = visual.with_progress(max(reported))

        outcome = classify_outcome(visual, audio)
        if outcome.status is CycleStatus.DEGRADED:
            logger.info(
                "Cycle %d continues without audio: %s",
                context.cycle_id,
                audio.error,
                extra={
                    "cycle_id": context.cycle_id,
                    "error_kind": ErrorKind.DEGRADED_MEDIA.value,
                },
            )
        return outcome

    # ─── Resource ownership ───────────────────────────────────────

    def held(self, cycle_id: int) -> tuple[MediaHandle, ...]:
        return tuple(self._held.get(cycle_id, ()))

    def release_cycle(self, cycle_id: int) -> int:
        """Release every handle obtained for a cycle. Safe to repeat."""
        handles = self._held.pop(cycle_id, [])
        for handle in handles:
            handle.release()
        if handles:
            logger.debug("Released %d media handle(s) of cycle %d", len(handles), cycle_id)
        return len(handles)

    def release_all(self) -> int:
        return sum(self.release_cycle(cid) for cid in list(self._held))

    # ─── Internal ─────────────────────────────────────────────────

    async def _run_task(
        self, cycle_id: int, task: MediaTask, call: Awaitable[MediaHandle]
    ) -> MediaTask:
        """Await one generation and turn whatever happens into a MediaTask."""
        kind = task.kind.value
        try:
            handle = await call
        except QuotaExceeded as e:
            result = task.failed(TaskOutcome.QUOTA_EXCEEDED, str(e) or "quota exceeded")
        except Exception as e:
            result = task.failed(TaskOutcome.FAILED, str(e) or e.__class__.__name__)
        else:
            if handle is None:
                result = task.failed(TaskOutcome.FAILED, "no media returned")
            else:
                self._held[cycle_id].append(handle)
                result = task.succeeded(handle)

        metrics.inc("media.outcome", labels={"kind": kind, "outcome": result.outcome.value})
        if result.outcome is not TaskOutcome.OK:
            logger.warning(
                "Cycle %d %s generation %s: %s",
                cycle_id,
                kind,
                result.outcome.value,
                result.error,
                extra={"cycle_id": cycle_id, "kind": kind, "status": result.outcome.value},
            )
        return result
