"""
OpenAI Content Service — text, video and speech for the live channel.

- Base content: chat completion in JSON mode, validated into BaseContent
- Visual: a video job, polled until done, downloaded into the media dir
- Audio: speech synthesis of the cycle's audio prompt
- Chat reply / host question / overlay quote / summary: short completions

Every upstream error is translated into QuotaExceeded or GenerationFailed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Sequence

import openai
from openai import AsyncOpenAI

import serenity.core.config as config_module
from serenity.core.config import ContentConfig
from serenity.core.metrics import metrics
from serenity.live.models import BaseContent, ChatMessage, Sender
from serenity.providers.base import (
    ContentService,
    ContentServiceError,
    GenerationFailed,
    MediaHandle,
    ProgressCallback,
    QuotaExceeded,
)

logger = logging.getLogger(__name__)

_QUOTA_MARKERS = ("RESOURCE_EXHAUSTED", "429", "quota")
_VIDEO_PENDING = ("queued", "in_progress")

# Transcripts shorter than this aren't worth a summary
MIN_SUMMARY_CHARS = 50

HOST_QUESTION_FALLBACK = "How does this theme resonate with you today?"

PRODUCER_PROMPT = """You are the producer of "{channel}", a live spiritual stream. Generate fresh content for the next segment.
1. Identify 2-3 "trendingTopics" in current spiritual discourse. For each give a 'topic' and a 'reason' explaining why it matters now.
2. Based on the most prominent trend, choose a central 'theme' for the stream.
3. Write a powerful 'overlayQuote' that captures the theme.
4. Write a descriptive, artistic 'videoPrompt' for a text-to-video model to produce a continuous, calm visual loop for the theme.
5. Write an 'audioPrompt': a short, soothing spoken passage to be read over the visuals.
6. Write 5-7 short 'affirmations' related to the theme.

Respond with a single JSON object with the keys: theme, overlayQuote, videoPrompt, audioPrompt, trendingTopics, affirmations."""

CHAT_SYSTEM_PROMPT = """You are Kai, the serene host of "{channel}". Welcome viewers and gently remind them of the current theme. Encourage interaction with short reflective questions. Be concise and warm, and foster a peaceful, shared experience."""

HOST_QUESTION_PROMPT = """You are Kai, the host of "{channel}". The current theme is "{theme}". Write a single short, gentle, open-ended question to post in the live chat that invites viewers to reflect on the theme. Return only the question."""

OVERLAY_PROMPT = """The current stream theme is "{theme}". Provide a single short, new, inspirational quote or affirmation related to this theme. Return only the quote."""

SUMMARY_PROMPT = """You are a chat analyst. Summarize the current mood or key themes of this live chat transcript in one short, insightful sentence that starts with "Community Reflection:".

Chat Transcript:
---
{transcript}
---"""


def is_quota_error(error: BaseException) -> bool:
    if isinstance(error, openai.RateLimitError):
        return True
    text = str(error)
    return any(marker in text for marker in _QUOTA_MARKERS)


def translate_error(error: BaseException) -> ContentServiceError:
    if isinstance(error, ContentServiceError):
        return error
    if is_quota_error(error):
        return QuotaExceeded(str(error))
    return GenerationFailed(str(error) or error.__class__.__name__)


def format_transcript(history: Sequence[ChatMessage]) -> str:
    return "\n".join(f"{m.sender.value}: {m.text}" for m in history)


def _to_openai_messages(history: Sequence[ChatMessage]) -> list[dict]:
    return [
        {"role": "assistant" if m.sender is Sender.AI else "user", "content": m.text}
        for m in history
        if m.sender is not Sender.SYSTEM
    ]


class OpenAIContentService(ContentService):
    def __init__(self, settings: ContentConfig | None = None, channel: str | None = None):
        self._settings = settings or config_module.config.content
        self._channel = channel or config_module.config.live.channel_name
        self.client: AsyncOpenAI | None = None

    async def start(self) -> None:
        if self.client:
            return
        client_kwargs = {}
        if self._settings.api_key:
            client_kwargs["api_key"] = self._settings.api_key
        if self._settings.base_url:
            client_kwargs["base_url"] = self._settings.base_url
        self.client = AsyncOpenAI(**client_kwargs)
        os.makedirs(self._settings.media_dir, exist_ok=True)
        logger.info(
            "OpenAI content ready (text=%s, video=%s, tts=%s)",
            self._settings.text_model,
            self._settings.video_model,
            self._settings.tts_model,
        )

    async def stop(self) -> None:
        if self.client:
            await self.client.close()
        self.client = None

    # ─── Base content ─────────────────────────────────────────────

    async def fetch_base_content(self) -> BaseContent:
        raw = await self._complete(
            [{"role": "user", "content": PRODUCER_PROMPT.format(channel=self._channel)}],
            json_mode=True,
            max_tokens=1200,
        )
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            return BaseContent.from_dict(data)
        except ValueError as e:
            raise GenerationFailed(f"Unusable base content: {e}") from e

    # ─── Media ────────────────────────────────────────────────────

    async def generate_visual(
        self, prompt: str, theme: str, on_progress: ProgressCallback
    ) -> MediaHandle:
        client = self._require_client()
        started = time.time()
        on_progress(0)
        try:
            video = await client.videos.create(
                model=self._settings.video_model,
                prompt=f"{prompt}\nArtistic direction: {theme}.",
                size=self._settings.video_size,
                seconds=self._settings.video_seconds,
            )
            on_progress(10)

            polls = 0
            max_polls = self._settings.video_max_polls
            while video.status in _VIDEO_PENDING and polls < max_polls:
                polls += 1
                await asyncio.sleep(self._settings.video_poll_interval)
                video = await client.videos.retrieve(video.id)
                on_progress(10 + round(polls / max_polls * 80))

            if video.status in _VIDEO_PENDING:
                raise GenerationFailed(f"Video {video.id} timed out after {polls} polls")
            if video.status != "completed":
                raise GenerationFailed(f"Video {video.id} ended as {video.status}")

            on_progress(95)
            content = await client.videos.download_content(video.id, variant="video")
            path = await self._write_media("visual", ".mp4", content.content)
        except Exception as e:
            on_progress(100)
            metrics.inc("provider.visual.errors")
            raise translate_error(e) from e

        on_progress(100)
        metrics.observe("provider.visual.latency_ms", (time.time() - started) * 1000)
        return MediaHandle(kind="visual", path=path, mime_type="video/mp4")

    async def generate_audio(self, prompt: str, theme: str) -> MediaHandle:
        client = self._require_client()
        started = time.time()
        try:
            response = await client.audio.speech.create(
                model=self._settings.tts_model,
                voice=self._settings.tts_voice,
                input=prompt,
                response_format="mp3",
            )
            path = await self._write_media("audio", ".mp3", response.content)
        except Exception as e:
            metrics.inc("provider.audio.errors")
            raise translate_error(e) from e

        metrics.observe("provider.audio.latency_ms", (time.time() - started) * 1000)
        logger.debug("Audio for theme %r written to %s", theme, path)
        return MediaHandle(kind="audio", path=path, mime_type="audio/mpeg")

    # ─── Text ─────────────────────────────────────────────────────

    async def generate_chat_reply(
        self, history: Sequence[ChatMessage], context: str
    ) -> str | None:
        messages = [
            {"role": "system", "content": CHAT_SYSTEM_PROMPT.format(channel=context)}
        ]
        messages.extend(_to_openai_messages(history))
        text = await self._complete(messages, max_tokens=200)
        return text or None

    async def generate_host_question(self, theme: str) -> str | None:
        prompt = HOST_QUESTION_PROMPT.format(channel=self._channel, theme=theme)
        text = await self._complete([{"role": "user", "content": prompt}], max_tokens=60)
        return text or HOST_QUESTION_FALLBACK

    async def generate_overlay_quote(self, theme: str) -> str | None:
        prompt = OVERLAY_PROMPT.format(theme=theme)
        text = await self._complete([{"role": "user", "content": prompt}], max_tokens=60)
        return text.strip('"') or None

    async def summarize(self, history: Sequence[ChatMessage]) -> str | None:
        transcript = format_transcript(history)
        if len(transcript.strip()) < MIN_SUMMARY_CHARS:
            return None
        prompt = SUMMARY_PROMPT.format(transcript=transcript)
        text = await self._complete([{"role": "user", "content": prompt}], max_tokens=80)
        return text or None

    async def health_check(self) -> dict:
        return {
            "provider": "openai",
            "text_model": self._settings.text_model,
            "video_model": self._settings.video_model,
            "status": "ready" if self.client else "not_started",
        }

    # ─── Internal ─────────────────────────────────────────────────

    def _require_client(self) -> AsyncOpenAI:
        if not self.client:
            raise GenerationFailed("OpenAI content service not started")
        return self.client

    async def _complete(
        self,
        messages: list[dict],
        json_mode: bool = False,
        max_tokens: int = 300,
        temperature: float = 0.8,
    ) -> str:
        client = self._require_client()
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        started = time.time()
        try:
            response = await client.chat.completions.create(
                model=self._settings.text_model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                **kwargs,
            )
        except Exception as e:
            metrics.inc("provider.text.errors")
            raise translate_error(e) from e
        metrics.observe("provider.text.latency_ms", (time.time() - started) * 1000)
        return (response.choices[0].message.content or "").strip()

    async def _write_media(self, kind: str, suffix: str, data: bytes) -> str:
        path = Path(self._settings.media_dir) / f"{kind}-{uuid.uuid4().hex}{suffix}"
        await asyncio.to_thread(path.write_bytes, data)
        return str(path)
