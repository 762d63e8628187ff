"""
Serenity — a self-refreshing live channel.

Every few minutes a new refresh cycle generates a theme, a visual loop and
a narration track; between refreshes the host asks questions, overlays and
affirmations rotate, and viewers chat, post intentions and send light.

Run: uvicorn serenity.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

import serenity.core.config as _config_mod
from serenity import __version__
from serenity.core.clock import SystemClock
from serenity.core.config import config
from serenity.core.logging import setup_logging
from serenity.core.metrics import metrics
from serenity.http.live import create_live_router
from serenity.kernel.event_bus import StateBus
from serenity.live import (
    ChatSessionManager,
    EphemeralEventRegistry,
    PeriodicTaskScheduler,
    RefreshCycleController,
)
from serenity.providers import get_content_service

# --- Setup ---
setup_logging()
logger = logging.getLogger("serenity")

# --- Live session ---
clock = SystemClock()
bus = StateBus()
scheduler = PeriodicTaskScheduler(clock)
content_service = get_content_service()
controller = RefreshCycleController(
    content_service,
    config.live,
    clock=clock,
    bus=bus,
    scheduler=scheduler,
    chat=ChatSessionManager(
        content_service, scheduler, config.live, bus=bus, clock=clock
    ),
    events=EphemeralEventRegistry(config.events, clock=clock, bus=bus),
)

# --- App ---
app = FastAPI(title="Serenity", version=__version__)
app.include_router(
    create_live_router(controller, sse_keepalive=config.server.sse_keepalive)
)


@app.on_event("startup")
async def startup():
    await content_service.start()
    cycle_id = await controller.start()
    logger.info(
        "Serenity ready (channel=%r, provider=%s, first cycle=%d)",
        config.live.channel_name,
        config.content.provider,
        cycle_id,
    )


@app.on_event("shutdown")
async def shutdown():
    await controller.stop()
    await content_service.stop()


@app.get("/health")
async def health():
    """Health check — reports provider status, session state and metrics."""
    provider_health = await content_service.health_check()
    current = controller.current
    return JSONResponse(
        {
            "status": "ok",
            "version": __version__,
            "provider": provider_health,
            "live": {
                "running": controller.running,
                "is_refreshing": controller.is_refreshing,
                "cycle_id": current.cycle_id if current else None,
                "cycle_status": current.status.value if current else None,
            },
            "metrics": metrics.snapshot(),
        }
    )


@app.get("/config")
async def get_config():
    """Return the current configuration, without secrets."""
    cfg = _config_mod.config  # Always read the latest (survives reload)
    return JSONResponse(
        {
            "live": {
                "channel_name": cfg.live.channel_name,
                "refresh_interval": cfg.live.refresh_interval,
                "host_interval": cfg.live.host_interval,
                "overlay_interval": cfg.live.overlay_interval,
                "affirmation_interval": cfg.live.affirmation_interval,
                "summary_interval": cfg.live.summary_interval,
            },
            "events": {
                "intention_ttl": cfg.events.intention_ttl,
                "light_ttl": cfg.events.light_ttl,
            },
            "content": {
                "provider": cfg.content.provider,
                "text_model": cfg.content.text_model,
                "video_model": cfg.content.video_model,
                "tts_model": cfg.content.tts_model,
                "tts_voice": cfg.content.tts_voice,
            },
        }
    )
