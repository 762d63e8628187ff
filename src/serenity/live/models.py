"""
Live Session Models — the values the live session publishes.

Every model here is a frozen dataclass. Owners publish a new instance for
every change; nothing visible to observers is ever mutated in place.

    RefreshCycle     — one refresh of live content and its two MediaTasks
    ChatMessage      — append-only chat log entry
    OverlayState     — rotating quote overlay
    AffirmationState — affirmation currently on screen
    ChatSummary      — latest community reflection
    EphemeralEvent   — short-lived intention word or light orb
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping

from serenity.providers.base import MediaHandle


class CycleStatus(str, Enum):
    PENDING = "pending"
    OK = "settled-ok"
    DEGRADED = "settled-degraded"  # visual ok, audio lost
    FAILED = "settled-failed"

    @property
    def settled(self) -> bool:
        return self is not CycleStatus.PENDING


class MediaKind(str, Enum):
    VISUAL = "visual"
    AUDIO = "audio"


class TaskOutcome(str, Enum):
    PENDING = "pending"
    OK = "ok"
    QUOTA_EXCEEDED = "quota-exceeded"
    FAILED = "failed"


class ErrorKind(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"  # user-visible, retry later
    GENERATION_FAILED = "generation_failed"  # user-visible, retry
    DEGRADED_MEDIA = "degraded_media"  # not surfaced
    SCHEDULER_TRANSIENT = "scheduler_transient"  # not surfaced


class Sender(str, Enum):
    USER = "user"
    AI = "ai"
    SYSTEM = "system"


class EventKind(str, Enum):
    INTENTION = "intention-text"
    LIGHT = "light-orb"


@dataclass(frozen=True)
class TrendingTopic:
    topic: str
    reason: str


@dataclass(frozen=True)
class BaseContent:
    """What the producer decided this cycle is about."""

    theme: str
    overlay_quote: str
    audio_prompt: str
    affirmations: tuple[str, ...] = ()
    trending_topics: tuple[TrendingTopic, ...] = ()
    video_prompt: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BaseContent:
        """Build from the producer's JSON. Raises ValueError when incomplete."""
        missing = [
            key
            for key in ("theme", "overlayQuote", "audioPrompt")
            if not isinstance(data.get(key), str) or not data[key].strip()
        ]
        if missing:
            raise ValueError(f"Base content missing fields: {', '.join(missing)}")

        topics = tuple(
            TrendingTopic(topic=str(t.get("topic", "")), reason=str(t.get("reason", "")))
            for t in data.get("trendingTopics") or []
            if isinstance(t, Mapping)
        )
        affirmations = tuple(
            str(a).strip() for a in data.get("affirmations") or [] if str(a).strip()
        )
        return cls(
            theme=data["theme"].strip(),
            overlay_quote=data["overlayQuote"].strip(),
            audio_prompt=data["audioPrompt"].strip(),
            affirmations=affirmations,
            trending_topics=topics,
            video_prompt=str(data.get("videoPrompt") or "").strip(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "theme": self.theme,
            "overlay_quote": self.overlay_quote,
            "affirmations": list(self.affirmations),
            "trending_topics": [
                {"topic": t.topic, "reason": t.reason} for t in self.trending_topics
            ],
        }


@dataclass(frozen=True)
class CycleError:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class MediaTask:
    """One of the two generation tasks of a cycle."""

    kind: MediaKind
    progress: int = 0
    outcome: TaskOutcome = TaskOutcome.PENDING
    handle: MediaHandle | None = None
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.outcome is not TaskOutcome.PENDING

    def with_progress(self, value: int) -> MediaTask:
        # Recorded progress never moves backwards, whatever the service reports
        clamped = max(0, min(100, int(value)))
        return replace(self, progress=max(self.progress, clamped))

    def succeeded(self, handle: MediaHandle) -> MediaTask:
        progress = 100 if self.kind is MediaKind.VISUAL else self.progress
        return replace(
            self, outcome=TaskOutcome.OK, handle=handle, progress=progress
        )

    def failed(self, outcome: TaskOutcome, error: str) -> MediaTask:
        return replace(self, outcome=outcome, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "progress": self.progress,
            "outcome": self.outcome.value,
            "error": self.error,
        }


@dataclass(frozen=True)
class CycleOutcome:
    """What MediaGenerationCoordinator.run() hands back."""

    status: CycleStatus
    visual: MediaTask
    audio: MediaTask
    error: CycleError | None = None


@dataclass(frozen=True)
class RefreshCycle:
    cycle_id: int
    status: CycleStatus = CycleStatus.PENDING
    content: BaseContent | None = None
    error: CycleError | None = None
    visual: MediaTask = field(default_factory=lambda: MediaTask(MediaKind.VISUAL))
    audio: MediaTask = field(default_factory=lambda: MediaTask(MediaKind.AUDIO))
    started_at: float = 0.0
    settled_at: float | None = None
    settlement: int = 0

    @property
    def theme(self) -> str:
        return self.content.theme if self.content else ""

    @property
    def visual_handle(self) -> MediaHandle | None:
        return self.visual.handle

    @property
    def audio_handle(self) -> MediaHandle | None:
        return self.audio.handle

    def with_content(self, content: BaseContent) -> RefreshCycle:
        return replace(self, content=content)

    def with_visual_progress(self, value: int) -> RefreshCycle:
        return replace(self, visual=self.visual.with_progress(value))

    def failed(self, error: CycleError, settled_at: float) -> RefreshCycle:
        return replace(
            self, status=CycleStatus.FAILED, error=error, settled_at=settled_at
        )

    def settled(self, outcome: CycleOutcome, settled_at: float) -> RefreshCycle:
        return replace(
            self,
            status=outcome.status,
            error=outcome.error,
            visual=outcome.visual,
            audio=outcome.audio,
            settled_at=settled_at,
        )

    def stamped(self, settlement: int) -> RefreshCycle:
        """Mark this as the settlement-th cycle to settle in the session."""
        return replace(self, settlement=settlement)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "status": self.status.value,
            "settlement": self.settlement,
            "content": self.content.to_dict() if self.content else None,
            "error": (
                {"kind": self.error.kind.value, "message": self.error.message}
                if self.error
                else None
            ),
            "visual": self.visual.to_dict(),
            "audio": self.audio.to_dict(),
            "has_visual": self.visual_handle is not None,
            "has_audio": self.audio_handle is not None,
        }


@dataclass(frozen=True)
class ChatMessage:
    sender: Sender
    text: str
    sequence: int
    created_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"sender": self.sender.value, "text": self.text, "sequence": self.sequence}


@dataclass(frozen=True)
class OverlayState:
    text: str = ""
    version: int = 0
    position: str = "center"

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "version": self.version, "position": self.position}


@dataclass(frozen=True)
class ChatSummary:
    text: str = ""
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "version": self.version}


@dataclass(frozen=True)
class AffirmationState:
    text: str = ""
    index: int = -1
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "index": self.index, "version": self.version}


@dataclass(frozen=True)
class EphemeralEvent:
    event_id: str
    kind: EventKind
    payload: Mapping[str, Any]
    created_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_visible(self, now: float) -> bool:
        return now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "payload": dict(self.payload),
            "ttl": self.ttl,
        }
