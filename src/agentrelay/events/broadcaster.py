"""
Event Broadcaster — fan-out of the conversation timeline to every viewer.

One broadcaster per process. Each viewer connection subscribes and gets
its own bounded asyncio.Queue of pre-encoded SSE frames, so a slow viewer
never blocks the publisher or any other viewer.

Design:
- subscribe() enqueues a synthetic `connected` frame first; no replay
- publish() encodes once, put_nowait()s everywhere, never raises
- A closed or full subscriber is dropped during publish (lazy cleanup)
- unsubscribe() is idempotent and is called on transport disconnect

Usage:
    broadcaster = EventBroadcaster()

    subscriber = broadcaster.subscribe()
    async for frame in broadcaster.listen(subscriber):
        await send(frame)

    await broadcaster.publish(Complete(session_id="abc"))
    broadcaster.unsubscribe(subscriber)
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, AsyncGenerator

from agentrelay.events.contracts import SessionEvent
from agentrelay.session.models import now_ms

logger = logging.getLogger(__name__)

# Sentinel to wake a listener whose subscriber was closed
_CLOSED = object()

_ids = itertools.count(1)


def format_frame(payload: dict[str, Any]) -> str:
    """text/event-stream framing for one JSON payload."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class Subscriber:
    """One live viewer channel."""

    def __init__(self, maxsize: int = 1000) -> None:
        self.id = next(_ids)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Listener sees `closed` after draining
            pass

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id}, closed={self.closed})"


class EventBroadcaster:
    """Subscriber registry plus best-effort, ordered fan-out."""

    def __init__(self, queue_size: int = 1000) -> None:
        self.queue_size = queue_size
        self._subscribers: list[Subscriber] = []

    def subscribe(self) -> Subscriber:
        subscriber = Subscriber(maxsize=self.queue_size)
        subscriber.queue.put_nowait(
            format_frame({"type": "connected", "timestamp": now_ms()})
        )
        self._subscribers.append(subscriber)
        logger.debug(
            "Subscriber %d connected (total: %d)",
            subscriber.id,
            len(self._subscribers),
            extra={"subscribers": len(self._subscribers)},
        )
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove and close a subscriber. Safe to call more than once."""
        try:
            self._subscribers.remove(subscriber)
            logger.debug(
                "Subscriber %d disconnected (total: %d)",
                subscriber.id,
                len(self._subscribers),
            )
        except ValueError:
            pass
        subscriber.close()

    async def publish(self, event: SessionEvent) -> int:
        """
        Deliver an event to every live subscriber.

        Non-blocking: uses put_nowait so the publisher never waits.
        Returns the number of subscribers that received the event.
        """
        frame = format_frame(event.to_dict())
        delivered = 0
        dead: list[Subscriber] = []

        for subscriber in self._subscribers:
            if subscriber.closed:
                dead.append(subscriber)
                continue
            try:
                subscriber.queue.put_nowait(frame)
                delivered += 1
            except asyncio.QueueFull:
                logger.debug(
                    "Subscriber %d queue full, dropping subscriber", subscriber.id
                )
                dead.append(subscriber)

        for subscriber in dead:
            self.unsubscribe(subscriber)

        return delivered

    async def listen(self, subscriber: Subscriber) -> AsyncGenerator[str, None]:
        """Yield frames for a subscriber until it is closed."""
        while True:
            item = await subscriber.queue.get()
            if item is _CLOSED:
                break
            yield item
            if subscriber.closed and subscriber.queue.empty():
                break

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def close_all(self) -> None:
        """Close every subscriber. Used on shutdown."""
        for subscriber in list(self._subscribers):
            self.unsubscribe(subscriber)
