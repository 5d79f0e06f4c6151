"""
Event stream API — Server-Sent Events fan-out plus health.

Endpoints:
    GET /api/events   → text/event-stream, `connected` frame first
    GET /api/health   → liveness and subscriber count
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncGenerator

from fastapi import APIRouter
from fastapi.responses import JSONResponse, StreamingResponse

from agentrelay.session.models import now_ms

if TYPE_CHECKING:
    from agentrelay.events.broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_events_router(broadcaster: "EventBroadcaster") -> APIRouter:
    """Create the event stream router."""

    router = APIRouter(prefix="/api", tags=["events"])

    @router.get("/events")
    async def events() -> StreamingResponse:
        """SSE stream of every session event published from now on."""
        return StreamingResponse(
            sse_stream(broadcaster),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @router.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "timestamp": now_ms(),
                "subscribers": broadcaster.subscriber_count(),
            }
        )

    return router


# ─── SSE Helpers ──────────────────────────────────────────────


async def sse_stream(broadcaster: "EventBroadcaster") -> AsyncGenerator[str, None]:
    """Frames for one connection.

    The subscription starts with the first frame pulled, so a response that
    is never streamed leaves nothing registered. Unsubscribes when the
    client goes away.
    """
    subscriber = broadcaster.subscribe()
    try:
        async for frame in broadcaster.listen(subscriber):
            yield frame
    finally:
        broadcaster.unsubscribe(subscriber)
        logger.debug("SSE client %d disconnected", subscriber.id)
