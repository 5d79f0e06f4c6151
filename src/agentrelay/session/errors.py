"""Lookup failures raised to the immediate caller, never broadcast."""

from __future__ import annotations


class NotFoundError(LookupError):
    """Base for unknown-entity lookups. The RPC layer maps it to 404."""


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class WorkspaceNotFoundError(NotFoundError):
    def __init__(self, workspace_id: str):
        super().__init__(f"Workspace not found: {workspace_id}")
        self.workspace_id = workspace_id
