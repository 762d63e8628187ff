"""Tests for MediaGenerationCoordinator — fan-in join and outcome classification."""

from __future__ import annotations

import asyncio

import pytest

from conftest import make_content
from serenity.core.metrics import metrics
from serenity.live.coordinator import (
    VISUAL_FAILED_MESSAGE,
    VISUAL_QUOTA_MESSAGE,
    CycleContext,
    MediaGenerationCoordinator,
    build_visual_prompt,
    classify_outcome,
)
from serenity.live.models import (
    BaseContent,
    CycleStatus,
    ErrorKind,
    MediaKind,
    MediaTask,
    TaskOutcome,
)
from serenity.providers.base import GenerationFailed, MediaHandle, QuotaExceeded


def _task(kind: MediaKind, outcome: TaskOutcome) -> MediaTask:
    task = MediaTask(kind)
    if outcome is TaskOutcome.OK:
        return task.succeeded(MediaHandle(kind=kind.value, path=None))
    return task.failed(outcome, "nope")


# ─── Classification ──────────────────────────────────────────────


class TestClassifyOutcome:
    def test_both_ok(self):
        outcome = classify_outcome(
            _task(MediaKind.VISUAL, TaskOutcome.OK), _task(MediaKind.AUDIO, TaskOutcome.OK)
        )
        assert outcome.status is CycleStatus.OK
        assert outcome.error is None

    def test_audio_failure_degrades(self):
        outcome = classify_outcome(
            _task(MediaKind.VISUAL, TaskOutcome.OK),
            _task(MediaKind.AUDIO, TaskOutcome.FAILED),
        )
        assert outcome.status is CycleStatus.DEGRADED
        assert outcome.error is None

    def test_audio_quota_also_only_degrades(self):
        outcome = classify_outcome(
            _task(MediaKind.VISUAL, TaskOutcome.OK),
            _task(MediaKind.AUDIO, TaskOutcome.QUOTA_EXCEEDED),
        )
        assert outcome.status is CycleStatus.DEGRADED

    @pytest.mark.parametrize("audio", [TaskOutcome.OK, TaskOutcome.FAILED])
    def test_visual_quota_fails_with_quota_message(self, audio):
        outcome = classify_outcome(
            _task(MediaKind.VISUAL, TaskOutcome.QUOTA_EXCEEDED), _task(MediaKind.AUDIO, audio)
        )
        assert outcome.status is CycleStatus.FAILED
        assert outcome.error.kind is ErrorKind.QUOTA_EXCEEDED
        assert outcome.error.message == VISUAL_QUOTA_MESSAGE

    @pytest.mark.parametrize("audio", [TaskOutcome.OK, TaskOutcome.QUOTA_EXCEEDED])
    def test_visual_failure_fails_with_generic_message(self, audio):
        outcome = classify_outcome(
            _task(MediaKind.VISUAL, TaskOutcome.FAILED), _task(MediaKind.AUDIO, audio)
        )
        assert outcome.status is CycleStatus.FAILED
        assert outcome.error.kind is ErrorKind.GENERATION_FAILED
        assert outcome.error.message == VISUAL_FAILED_MESSAGE


class TestVisualPrompt:
    def test_prefers_video_prompt(self):
        assert build_visual_prompt(make_content()) == "Slow drifting light, stillness"

    def test_falls_back_to_theme_and_quote(self):
        content = BaseContent(theme="Hope", overlay_quote="Dawn comes.", audio_prompt="x")
        prompt = build_visual_prompt(content)
        assert "Theme: Hope." in prompt
        assert "Reflection: Dawn comes." in prompt


# ─── Running a cycle ─────────────────────────────────────────────


class TestRun:
    @pytest.mark.asyncio
    async def test_both_tasks_succeed(self, service):
        coordinator = MediaGenerationCoordinator(service)
        outcome = await coordinator.run(CycleContext(1, make_content()))

        assert outcome.status is CycleStatus.OK
        assert outcome.visual.progress == 100
        assert outcome.visual.handle is not None
        assert outcome.audio.handle is not None
        assert len(coordinator.held(1)) == 2

    @pytest.mark.asyncio
    async def test_progress_forwarded_in_order(self, service):
        seen = []
        coordinator = MediaGenerationCoordinator(service)
        await coordinator.run(CycleContext(1, make_content(), on_progress=seen.append))
        assert seen == [0, 10, 50, 90, 95, 100]

    @pytest.mark.asyncio
    async def test_audio_failure_keeps_visual(self, service):
        service.audio_results.append(GenerationFailed("tts down"))
        coordinator = MediaGenerationCoordinator(service)

        outcome = await coordinator.run(CycleContext(1, make_content()))

        assert outcome.status is CycleStatus.DEGRADED
        assert outcome.visual.outcome is TaskOutcome.OK
        assert outcome.audio.outcome is TaskOutcome.FAILED
        assert outcome.audio.error == "tts down"
        assert [h.kind for h in coordinator.held(1)] == ["visual"]

    @pytest.mark.asyncio
    async def test_visual_quota_keeps_audio_handle_for_release(self, service):
        service.visual_results.append(QuotaExceeded("429"))
        coordinator = MediaGenerationCoordinator(service)

        outcome = await coordinator.run(CycleContext(1, make_content()))

        assert outcome.status is CycleStatus.FAILED
        assert outcome.visual.outcome is TaskOutcome.QUOTA_EXCEEDED
        assert [h.kind for h in coordinator.held(1)] == ["audio"]

    @pytest.mark.asyncio
    async def test_audio_failure_does_not_cancel_visual(self, service):
        """Audio fails immediately while visual is still running; visual still finishes."""
        gate = asyncio.Event()
        service.visual_gates.append(gate)
        service.audio_results.append(GenerationFailed("tts down"))
        coordinator = MediaGenerationCoordinator(service)

        run = asyncio.create_task(coordinator.run(CycleContext(1, make_content())))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not run.done()

        gate.set()
        outcome = await run
        assert outcome.visual.outcome is TaskOutcome.OK
        assert outcome.status is CycleStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_none_handle_is_a_failure(self, service):
        async def nothing(prompt, theme):
            return None

        service.generate_audio = nothing
        coordinator = MediaGenerationCoordinator(service)
        outcome = await coordinator.run(CycleContext(1, make_content()))
        assert outcome.audio.outcome is TaskOutcome.FAILED
        assert outcome.audio.error == "no media returned"

    @pytest.mark.asyncio
    async def test_observer_error_does_not_break_generation(self, service):
        def broken(value):
            raise RuntimeError("observer bug")

        coordinator = MediaGenerationCoordinator(service)
        outcome = await coordinator.run(CycleContext(1, make_content(), on_progress=broken))
        assert outcome.status is CycleStatus.OK

    @pytest.mark.asyncio
    async def test_outcome_metrics(self, service):
        service.audio_results.append(GenerationFailed("x"))
        coordinator = MediaGenerationCoordinator(service)
        await coordinator.run(CycleContext(1, make_content()))

        assert metrics.counter("media.outcome", {"kind": "visual", "outcome": "ok"}) == 1
        assert metrics.counter("media.outcome", {"kind": "audio", "outcome": "failed"}) == 1


# ─── Releasing ───────────────────────────────────────────────────


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_cycle_is_idempotent(self, service):
        coordinator = MediaGenerationCoordinator(service)
        await coordinator.run(CycleContext(1, make_content()))

        assert coordinator.release_cycle(1) == 2
        assert coordinator.release_cycle(1) == 0
        assert all(h.released for h in service.handles)

    @pytest.mark.asyncio
    async def test_release_all(self, service):
        coordinator = MediaGenerationCoordinator(service)
        await coordinator.run(CycleContext(1, make_content()))
        await coordinator.run(CycleContext(2, make_content()))

        assert coordinator.release_all() == 4
        assert coordinator.held(1) == ()
        assert coordinator.held(2) == ()

    def test_handle_release_removes_file(self, tmp_path):
        path = tmp_path / "visual.mp4"
        path.write_bytes(b"\x00")
        handle = MediaHandle(kind="visual", path=str(path))

        handle.release()
        handle.release()  # Should not raise
        assert handle.released
        assert not path.exists()

    def test_release_missing_file_is_quiet(self, tmp_path):
        handle = MediaHandle(kind="audio", path=str(tmp_path / "gone.mp3"))
        handle.release()
        assert handle.released
