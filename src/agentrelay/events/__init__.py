"""
Events Package — the outward conversation timeline.

- SessionEvent variants: what viewers receive
- EventBroadcaster: fan-out to every connected viewer
"""

from agentrelay.events.broadcaster import EventBroadcaster, Subscriber, format_frame
from agentrelay.events.contracts import SessionEvent

__all__ = [
    "EventBroadcaster",
    "Subscriber",
    "format_frame",
    "SessionEvent",
]
