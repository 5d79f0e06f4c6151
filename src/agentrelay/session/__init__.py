"""
Session management — live conversation state and its durable snapshots.

Key components:
- SessionCoordinator: drives agent turns, one in flight per session
- process_agent_event: the per-event state machine
- SessionStore: SQLite-backed workspaces, sessions, drafts, settings
"""

from agentrelay.session.coordinator import SessionCoordinator
from agentrelay.session.errors import (
    NotFoundError,
    SessionNotFoundError,
    WorkspaceNotFoundError,
)
from agentrelay.session.models import ManagedSessionState, Message, Session, Workspace
from agentrelay.session.processor import CONTAINER_TOOLS, process_agent_event
from agentrelay.session.store import SessionStore

__all__ = [
    "SessionCoordinator",
    "NotFoundError",
    "SessionNotFoundError",
    "WorkspaceNotFoundError",
    "ManagedSessionState",
    "Message",
    "Session",
    "Workspace",
    "CONTAINER_TOOLS",
    "process_agent_event",
    "SessionStore",
]
