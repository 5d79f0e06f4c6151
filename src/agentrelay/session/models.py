"""
Session Models — the conversation data model shared by the coordinator,
the store and the outward event stream.

Hierarchy:
  Workspace → Session → Message

Messages are mutable dataclasses: a tool message is created when the tool
starts and updated in place when its result arrives. Timestamps are epoch
milliseconds so they serialize the same way viewers render them.

ManagedSessionState is the coordinator's live working set for one session.
It never leaves the process.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentrelay.agent.runtime import AgentHandle


def now_ms() -> int:
    return int(time.time() * 1000)


def new_message_id() -> str:
    return f"msg-{now_ms()}-{uuid.uuid4().hex[:9]}"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


# Message field → wire key. Fields not listed here are never serialized.
_MESSAGE_WIRE_KEYS = {
    "id": "id",
    "role": "role",
    "content": "content",
    "timestamp": "timestamp",
    "attachments": "attachments",
    "tool_name": "toolName",
    "tool_use_id": "toolUseId",
    "tool_input": "toolInput",
    "tool_status": "toolStatus",
    "tool_result": "toolResult",
    "is_error": "isError",
    "tool_intent": "toolIntent",
    "tool_display_name": "toolDisplayName",
    "is_intermediate": "isIntermediate",
    "turn_id": "turnId",
    "parent_tool_use_id": "parentToolUseId",
}


@dataclass
class Message:
    """One conversational unit: a user prompt, an assistant text, or a tool call."""

    role: str
    content: str = ""
    id: str = field(default_factory=new_message_id)
    timestamp: int = field(default_factory=now_ms)
    attachments: list[dict[str, Any]] | None = None
    tool_name: str | None = None
    tool_use_id: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_status: str | None = None
    tool_result: str | None = None
    is_error: bool | None = None
    tool_intent: str | None = None
    tool_display_name: str | None = None
    is_intermediate: bool | None = None
    turn_id: str | None = None
    parent_tool_use_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire/storage form: camelCase keys, absent fields omitted."""
        data: dict[str, Any] = {}
        for attr, key in _MESSAGE_WIRE_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        kwargs = {
            attr: data[key] for attr, key in _MESSAGE_WIRE_KEYS.items() if key in data
        }
        kwargs.setdefault("role", MessageRole.USER.value)
        return cls(**kwargs)


@dataclass
class Workspace:
    """A root folder that groups sessions."""

    id: str
    name: str
    root_path: str
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rootPath": self.root_path,
            "createdAt": self.created_at,
        }


@dataclass
class Session:
    """Durable identity of a conversation. Owned by the SessionStore."""

    id: str
    workspace_id: str
    name: str = "New Chat"
    messages: list[Message] = field(default_factory=list)
    is_flagged: bool = False
    is_unread: bool = False
    labels: list[str] = field(default_factory=list)
    todo_state: str | None = None
    working_directory: str | None = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def to_dict(self, is_processing: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "name": self.name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messages": [m.to_dict() for m in self.messages],
            "isProcessing": is_processing,
            "isFlagged": self.is_flagged,
            "isUnread": self.is_unread,
            "labels": list(self.labels),
        }
        if self.todo_state is not None:
            data["todoState"] = self.todo_state
        if self.working_directory is not None:
            data["workingDirectory"] = self.working_directory
        return data


@dataclass
class ManagedSessionState:
    """
    The coordinator's in-memory projection of one session.

    Per-turn fields (streaming_text, pending_tools, parent_tool_stack,
    tool_to_parent_map, pending_text_parent) are reset by begin_turn().
    `generation` increases every time a turn starts or is aborted; a turn
    task only publishes while its generation is current.
    """

    id: str
    session: Session
    workspace: Workspace
    messages: list[Message] = field(default_factory=list)
    agent_handle: "AgentHandle | None" = None
    is_processing: bool = False
    streaming_text: str = ""
    pending_tools: dict[str, str] = field(default_factory=dict)
    parent_tool_stack: list[str] = field(default_factory=list)
    tool_to_parent_map: dict[str, str] = field(default_factory=dict)
    pending_text_parent: str | None = None
    generation: int = 0

    def begin_turn(self) -> int:
        """Reset transient state for a new turn. Returns the new generation."""
        self.is_processing = True
        self.streaming_text = ""
        self.pending_tools.clear()
        self.parent_tool_stack = []
        self.tool_to_parent_map.clear()
        self.pending_text_parent = None
        self.generation += 1
        return self.generation

    def find_tool_message(self, tool_use_id: str) -> Message | None:
        for message in self.messages:
            if message.tool_use_id == tool_use_id:
                return message
        return None

    def snapshot(self) -> Session:
        """The durable view of this session with the live message list."""
        self.session.messages = list(self.messages)
        self.session.updated_at = now_ms()
        return self.session
