"""
Content service boundary — what the live session needs from a generator.

The session never talks to a model API directly. It calls a ContentService,
and every failure a service reports is one of two exceptions:

    QuotaExceeded     — upstream rate/usage limit; retry later
    GenerationFailed  — anything else

Text helpers (chat reply, host question, overlay quote, summary) return None
instead of raising when there is nothing useful to say.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Sequence

if TYPE_CHECKING:
    from serenity.live.models import BaseContent, ChatMessage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class ContentServiceError(Exception):
    """Base class for content service failures."""


class QuotaExceeded(ContentServiceError):
    """The upstream generator refused the request for quota reasons."""


class GenerationFailed(ContentServiceError):
    """The upstream generator failed for any other reason."""


@dataclass(eq=False)
class MediaHandle:
    """
    A generated media file owned by the live session.

    release() deletes the file. It is idempotent and never raises:
    a handle can be released by a superseding cycle and again at shutdown.
    """

    kind: str  # "visual" or "audio"
    path: str | None
    mime_type: str = "application/octet-stream"
    released: bool = field(default=False, init=False)

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        if not self.path:
            return
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove media file %s: %s", self.path, e)
        else:
            logger.debug("Released %s media %s", self.kind, self.path)


class ContentService(ABC):
    """Content generation interface used by the live session."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def fetch_base_content(self) -> "BaseContent":
        """Theme, quote, prompts, affirmations and trending topics."""
        ...

    @abstractmethod
    async def generate_visual(
        self, prompt: str, theme: str, on_progress: ProgressCallback
    ) -> MediaHandle:
        ...

    @abstractmethod
    async def generate_audio(self, prompt: str, theme: str) -> MediaHandle:
        ...

    @abstractmethod
    async def generate_chat_reply(
        self, history: Sequence["ChatMessage"], context: str
    ) -> str | None:
        ...

    @abstractmethod
    async def generate_host_question(self, theme: str) -> str | None:
        ...

    @abstractmethod
    async def generate_overlay_quote(self, theme: str) -> str | None:
        ...

    @abstractmethod
    async def summarize(self, history: Sequence["ChatMessage"]) -> str | None:
        ...

    async def health_check(self) -> dict:
        return {"provider": self.__class__.__name__, "status": "unknown"}
