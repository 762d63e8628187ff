"""
Live session — the self-refreshing Serenity Channel.

RefreshCycleController is the entry point; the other components are
exported for callers that compose their own session.
"""

from serenity.live.chat import ChatSessionManager
from serenity.live.controller import RefreshCycleController
from serenity.live.coordinator import MediaGenerationCoordinator
from serenity.live.ephemeral import EphemeralEventRegistry
from serenity.live.scheduler import PeriodicTaskScheduler, pick_excluding

__all__ = [
    "ChatSessionManager",
    "EphemeralEventRegistry",
    "MediaGenerationCoordinator",
    "PeriodicTaskScheduler",
    "RefreshCycleController",
    "pick_excluding",
]
