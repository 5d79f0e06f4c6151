"""
Agent runtime boundary — what the coordinator needs from an agent.

A runtime creates one handle per session. The handle runs turns: chat()
returns a lazy async sequence of AgentEvents that ends with Complete or
raises. force_abort() is a signal, not a wait; the running sequence is
expected to wind down on its own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from agentrelay.agent.contracts import AbortReason, AgentEvent


@dataclass
class HandleConfig:
    """Per-session settings handed to the runtime when a handle is created."""

    session_id: str
    workspace_root: str
    working_directory: str | None = None
    model: str | None = None
    env: dict[str, str] = field(default_factory=dict)


class AgentHandle(ABC):
    """A live agent bound to one session."""

    @abstractmethod
    def chat(
        self,
        text: str,
        attachments: list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator[AgentEvent]:
        ...

    @abstractmethod
    def force_abort(self, reason: AbortReason) -> None:
        ...

    @abstractmethod
    def respond_to_permission(
        self, request_id: str, allowed: bool, always_allow: bool
    ) -> None:
        ...

    @property
    def is_alive(self) -> bool:
        """False once the handle can no longer run turns."""
        return True

    async def close(self) -> None:
        """Release whatever the handle holds. Default: nothing."""


class AgentRuntime(ABC):
    """Factory for agent handles."""

    @abstractmethod
    async def create_handle(self, config: HandleConfig) -> AgentHandle:
        ...
