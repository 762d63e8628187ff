"""
Serenity Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
A .env file in the working directory is loaded first, if present.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _default_media_dir() -> str:
    return os.path.join(tempfile.gettempdir(), "serenity-media")


@dataclass(frozen=True)
class LiveConfig:
    """Refresh cycle and periodic cadence settings (seconds)."""

    channel_name: str = "The Serenity Channel"
    refresh_interval: float = 300.0
    host_interval: float = 75.0
    overlay_interval: float = 60.0
    affirmation_interval: float = 9.0  # 8s animation + 1s pause
    summary_interval: float = 45.0
    summary_min_messages: int = 3  # summarize only when MORE than this many
    summary_window: int = 10
    overlay_positions: tuple[str, ...] = ("center", "top", "bottom")

    @classmethod
    def from_env(cls) -> LiveConfig:
        return cls(
            channel_name=os.getenv("SERENITY_CHANNEL_NAME", "The Serenity Channel"),
            refresh_interval=float(os.getenv("SERENITY_REFRESH_INTERVAL", "300")),
            host_interval=float(os.getenv("SERENITY_HOST_INTERVAL", "75")),
            overlay_interval=float(os.getenv("SERENITY_OVERLAY_INTERVAL", "60")),
            affirmation_interval=float(
                os.getenv("SERENITY_AFFIRMATION_INTERVAL", "9")
            ),
            summary_interval=float(os.getenv("SERENITY_SUMMARY_INTERVAL", "45")),
            summary_min_messages=int(os.getenv("SERENITY_SUMMARY_MIN_MESSAGES", "3")),
            summary_window=int(os.getenv("SERENITY_SUMMARY_WINDOW", "10")),
        )


@dataclass(frozen=True)
class EventsConfig:
    """Ephemeral event lifetimes (seconds)."""

    intention_ttl: float = 15.0  # matches the float-up animation
    light_ttl: float = 13.0
    light_min_duration: float = 8.0
    light_max_duration: float = 13.0  # light_ttl must never be shorter

    @classmethod
    def from_env(cls) -> EventsConfig:
        return cls(
            intention_ttl=float(os.getenv("SERENITY_INTENTION_TTL", "15")),
            light_ttl=float(os.getenv("SERENITY_LIGHT_TTL", "13")),
            light_min_duration=float(os.getenv("SERENITY_LIGHT_MIN_DURATION", "8")),
            light_max_duration=float(os.getenv("SERENITY_LIGHT_MAX_DURATION", "13")),
        )


@dataclass(frozen=True)
class ContentConfig:
    """Content generation provider settings."""

    provider: str = "openai"
    api_key: str = ""
    base_url: str = ""
    text_model: str = "gpt-4o-mini"
    video_model: str = "sora-2"
    video_size: str = "1280x720"
    video_seconds: str = "8"
    video_poll_interval: float = 10.0
    video_max_polls: int = 30  # 30 polls * 10s = 5 minutes
    tts_model: str = "tts-1"
    tts_voice: str = "nova"
    media_dir: str = field(default_factory=_default_media_dir)

    @classmethod
    def from_env(cls) -> ContentConfig:
        return cls(
            provider=os.getenv("SERENITY_CONTENT_PROVIDER", "openai"),
            api_key=os.getenv("OPENAI_API_KEY", ""),
            base_url=os.getenv("SERENITY_OPENAI_BASE_URL", ""),
            text_model=os.getenv("SERENITY_TEXT_MODEL", "gpt-4o-mini"),
            video_model=os.getenv("SERENITY_VIDEO_MODEL", "sora-2"),
            video_size=os.getenv("SERENITY_VIDEO_SIZE", "1280x720"),
            video_seconds=os.getenv("SERENITY_VIDEO_SECONDS", "8"),
            video_poll_interval=float(
                os.getenv("SERENITY_VIDEO_POLL_INTERVAL", "10")
            ),
            video_max_polls=int(os.getenv("SERENITY_VIDEO_MAX_POLLS", "30")),
            tts_model=os.getenv("SERENITY_TTS_MODEL", "tts-1"),
            tts_voice=os.getenv("SERENITY_TTS_VOICE", "nova"),
            media_dir=os.getenv("SERENITY_MEDIA_DIR", _default_media_dir()),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Server settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    sse_keepalive: float = 15.0

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("SERENITY_HOST", "0.0.0.0"),
            port=int(os.getenv("SERENITY_PORT", "8000")),
            sse_keepalive=float(os.getenv("SERENITY_SSE_KEEPALIVE", "15")),
        )


@dataclass(frozen=True)
class SerenityConfig:
    """Root configuration."""

    live: LiveConfig = field(default_factory=LiveConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    content: ContentConfig = field(default_factory=ContentConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> SerenityConfig:
        return cls(
            live=LiveConfig.from_env(),
            events=EventsConfig.from_env(),
            content=ContentConfig.from_env(),
            server=ServerConfig.from_env(),
        )


# Singleton. Read config_module.config to see reloads
config = SerenityConfig.from_env()


def reload_config() -> SerenityConfig:
    """Re-read the environment and replace the module singleton."""
    global config
    config = SerenityConfig.from_env()
    return config
