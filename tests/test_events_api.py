"""Tests for the event stream API — GET /api/events and /api/health."""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from agentrelay.events import contracts as events
from agentrelay.events.broadcaster import EventBroadcaster
from agentrelay.http.events import SSE_HEADERS, create_events_router, sse_stream


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def client(broadcaster):
    app = FastAPI()
    app.include_router(create_events_router(broadcaster))
    return TestClient(app)


def test_health(client, broadcaster):
    broadcaster.subscribe()

    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["subscribers"] == 1
    assert isinstance(body["timestamp"], int)


def test_sse_headers():
    assert SSE_HEADERS == {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }


@pytest.mark.asyncio
async def test_events_route_subscribes_when_streaming_starts(broadcaster):
    router = create_events_router(broadcaster)
    [route] = [r for r in router.routes if r.path == "/api/events"]

    response = await route.endpoint()

    assert response.media_type == "text/event-stream"
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"
    assert broadcaster.subscriber_count() == 0

    first = await response.body_iterator.__anext__()
    assert json.loads(first[len("data: ") : -2])["type"] == "connected"
    assert broadcaster.subscriber_count() == 1
    await response.body_iterator.aclose()
    assert broadcaster.subscriber_count() == 0


@pytest.mark.asyncio
async def test_unstreamed_response_leaves_no_subscriber(broadcaster):
    router = create_events_router(broadcaster)
    [route] = [r for r in router.routes if r.path == "/api/events"]

    response = await route.endpoint()
    await response.body_iterator.aclose()
    await broadcaster.publish(events.Status(session_id="s1", message="working"))

    assert broadcaster.subscriber_count() == 0


@pytest.mark.asyncio
async def test_sse_stream_yields_frames_then_unsubscribes(broadcaster):
    stream = sse_stream(broadcaster)
    assert "connected" in await stream.__anext__()

    await broadcaster.publish(events.Status(session_id="s1", message="working"))
    await broadcaster.publish(events.Complete(session_id="s1"))
    broadcaster.close_all()

    frames = [f async for f in stream]

    payloads = [json.loads(f[len("data: ") : -2]) for f in frames]
    assert [p["type"] for p in payloads] == ["status", "complete"]
    assert broadcaster.subscriber_count() == 0


@pytest.mark.asyncio
async def test_sse_stream_unsubscribes_when_client_disconnects(broadcaster):
    stream = sse_stream(broadcaster)

    assert "connected" in await stream.__anext__()
    [subscriber] = broadcaster._subscribers
    await stream.aclose()

    assert broadcaster.subscriber_count() == 0
    assert subscriber.closed is True
