"""
Live API — observe and interact with the running channel + SSE streaming.

Endpoints:
    GET  /v1/live/state           → Snapshot of the live session
    POST /v1/live/refresh         → Start a new refresh cycle (202 Accepted)
    GET  /v1/live/chat            → Ordered chat messages + latest summary
    POST /v1/live/chat            → Append a viewer message (201)
    POST /v1/live/intentions      → Float a one-word intention (201)
    POST /v1/live/lights          → Send a light orb (201)
    GET  /v1/live/events          → Ephemeral events still visible
    GET  /v1/live/media/{kind}    → Current cycle's visual or audio file
    GET  /v1/live/stream          → SSE stream of published state
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from serenity.live.models import MediaKind

if TYPE_CHECKING:
    from serenity.kernel.event_bus import StateBus
    from serenity.live.controller import RefreshCycleController

logger = logging.getLogger(__name__)


def create_live_router(
    controller: "RefreshCycleController",
    sse_keepalive: float | None = 15.0,
) -> APIRouter:
    """Create the live session router."""

    router = APIRouter(prefix="/v1/live", tags=["live"])

    # ─── Session State ────────────────────────────────────────

    @router.get("/state")
    async def get_state() -> JSONResponse:
        """Current cycle, in-flight cycles, overlay, affirmation and summary."""
        return JSONResponse(controller.snapshot())

    @router.post("/refresh")
    async def refresh() -> JSONResponse:
        """
        Start a new refresh cycle. Returns 202 Accepted immediately.

        Progress and the settled cycle arrive on /v1/live/stream.
        """
        try:
            cycle_id = controller.request_refresh()
        except RuntimeError as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        return JSONResponse(
            {"cycle_id": cycle_id, "status": "accepted"}, status_code=202
        )

    # ─── Chat ─────────────────────────────────────────────────

    @router.get("/chat")
    async def get_chat() -> JSONResponse:
        chat = controller.chat
        return JSONResponse(
            {
                "messages": [m.to_dict() for m in chat.messages],
                "summary": chat.summary.to_dict(),
            }
        )

    @router.post("/chat")
    async def post_chat(request: Request) -> JSONResponse:
        """Append a viewer message. The host's reply follows asynchronously."""
        body = await _json_body(request)
        text = body.get("text")
        if not isinstance(text, str):
            return JSONResponse({"error": "Missing 'text' field"}, status_code=400)
        try:
            message = controller.chat.append_user(text)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse(message.to_dict(), status_code=201)

    # ─── Ephemeral Events ─────────────────────────────────────

    @router.post("/intentions")
    async def post_intention(request: Request) -> JSONResponse:
        body = await _json_body(request)
        word = body.get("word")
        if not isinstance(word, str):
            return JSONResponse({"error": "Missing 'word' field"}, status_code=400)
        try:
            event_id = controller.events.add_intention(word)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse(controller.events.get(event_id).to_dict(), status_code=201)

    @router.post("/lights")
    async def post_light() -> JSONResponse:
        event_id = controller.events.send_light()
        return JSONResponse(controller.events.get(event_id).to_dict(), status_code=201)

    @router.get("/events")
    async def get_events() -> JSONResponse:
        return JSONResponse(
            {"events": [e.to_dict() for e in controller.events.visible()]}
        )

    # ─── Media ────────────────────────────────────────────────

    @router.get("/media/{kind}")
    async def get_media(kind: str):
        """Serve the current cycle's media file."""
        try:
            media_kind = MediaKind(kind)
        except ValueError:
            return JSONResponse({"error": f"Unknown media kind {kind}"}, status_code=404)

        cycle = controller.current
        handle = None
        if cycle is not None:
            handle = (
                cycle.visual_handle
                if media_kind is MediaKind.VISUAL
                else cycle.audio_handle
            )
        if handle is None or handle.released or not handle.path:
            return JSONResponse({"error": f"No {kind} available"}, status_code=404)
        if not os.path.exists(handle.path):
            return JSONResponse({"error": f"No {kind} available"}, status_code=404)
        return FileResponse(handle.path, media_type=handle.mime_type)

    # ─── SSE Event Stream ─────────────────────────────────────

    @router.get("/stream")
    async def stream() -> StreamingResponse:
        """
        SSE stream of every state update the session publishes.

        The event name is the bus topic (live.cycle, chat.message, ...).
        """
        return StreamingResponse(
            sse_generator(controller.bus, sse_keepalive),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return router


# ─── Helpers ──────────────────────────────────────────────────


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def encode_payload(payload: Any) -> Any:
    to_dict = getattr(payload, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return payload


async def sse_generator(
    bus: "StateBus", keepalive: float | None = None
) -> AsyncGenerator[str, None]:
    """Format bus events as SSE until the bus closes."""
    queue = bus.subscribe()
    try:
        async for event in bus.listen(queue, idle_timeout=keepalive):
            if event is None:
                yield ": keepalive\n\n"
                continue
            data = json.dumps(encode_payload(event.payload), default=str)
            yield f"event: {event.topic}\ndata: {data}\n\n"
        yield "event: done\ndata: {}\n\n"
    finally:
        bus.unsubscribe(queue)
