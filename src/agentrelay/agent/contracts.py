"""
Agent Contracts — the closed set of events an agent turn can emit.

The agent process speaks JSON with camelCase keys. parse_agent_event()
turns one such object into a typed dataclass; anything it does not
recognise becomes UnknownAgentEvent so new agent versions never break
the coordinator.

Variants:
- TextDelta / TextComplete: assistant output, streamed then finalized
- ToolStart / ToolResult: one tool invocation, keyed by tool_use_id
- Status / Info / Error: human-readable notices
- ThinkingDelta / ThinkingComplete: reasoning output
- PermissionRequest: the agent wants approval for a tool
- TypedError: a structured error, forwarded as Error
- Complete: terminal event of a turn
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class AbortReason(str, Enum):
    """Why a running turn was force-aborted."""

    USER_STOP = "UserStop"
    REDIRECT = "Redirect"


@dataclass(frozen=True)
class TextDelta:
    text: str
    turn_id: str | None = None


@dataclass(frozen=True)
class TextComplete:
    text: str
    is_intermediate: bool = False
    turn_id: str | None = None


@dataclass(frozen=True)
class ToolStart:
    tool_use_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    parent_tool_use_id: str | None = None
    intent: str | None = None
    display_name: str | None = None
    turn_id: str | None = None


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    result: str | None = None
    is_error: bool = False
    turn_id: str | None = None


@dataclass(frozen=True)
class Status:
    message: str


@dataclass(frozen=True)
class Info:
    message: str


@dataclass(frozen=True)
class Error:
    message: str


@dataclass(frozen=True)
class ThinkingDelta:
    text: str
    turn_id: str | None = None


@dataclass(frozen=True)
class ThinkingComplete:
    text: str
    turn_id: str | None = None


@dataclass(frozen=True)
class PermissionRequest:
    request_id: str
    tool_name: str
    command: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class TypedError:
    """A structured error. `payload` is the raw object, kept for logging."""

    message: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Complete:
    pass


@dataclass(frozen=True)
class UnknownAgentEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)


AgentEvent = Union[
    TextDelta,
    TextComplete,
    ToolStart,
    ToolResult,
    Status,
    Info,
    Error,
    ThinkingDelta,
    ThinkingComplete,
    PermissionRequest,
    TypedError,
    Complete,
    UnknownAgentEvent,
]


def _typed_error_message(data: dict[str, Any]) -> str:
    message = data.get("message")
    if isinstance(message, str) and message:
        return message
    error = data.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    if isinstance(error, str) and error:
        return error
    return "Unknown typed error"


def parse_agent_event(data: dict[str, Any]) -> AgentEvent:
    """
    Parse one wire object into an AgentEvent.

    Never raises for an unrecognised or malformed object: those become
    UnknownAgentEvent and are dropped further down with a log line.
    """
    event_type = data.get("type")
    if not isinstance(event_type, str):
        return UnknownAgentEvent(type=str(event_type), payload=data)

    turn_id = data.get("turnId")

    try:
        if event_type == "text_delta":
            return TextDelta(text=data.get("text") or "", turn_id=turn_id)
        if event_type == "text_complete":
            return TextComplete(
                text=data.get("text") or "",
                is_intermediate=bool(data.get("isIntermediate", False)),
                turn_id=turn_id,
            )
        if event_type == "tool_start":
            return ToolStart(
                tool_use_id=data["toolUseId"],
                tool_name=data["toolName"],
                input=data.get("input") or {},
                parent_tool_use_id=data.get("parentToolUseId"),
                intent=data.get("intent"),
                display_name=data.get("displayName"),
                turn_id=turn_id,
            )
        if event_type == "tool_result":
            return ToolResult(
                tool_use_id=data["toolUseId"],
                result=data.get("result"),
                is_error=bool(data.get("isError", False)),
                turn_id=turn_id,
            )
        if event_type == "status":
            return Status(message=data.get("message") or "")
        if event_type == "info":
            return Info(message=data.get("message") or "")
        if event_type == "error":
            return Error(message=data.get("message") or "")
        if event_type == "thinking_delta":
            return ThinkingDelta(text=data.get("text") or "", turn_id=turn_id)
        if event_type == "thinking_complete":
            return ThinkingComplete(text=data.get("text") or "", turn_id=turn_id)
        if event_type == "permission_request":
            return PermissionRequest(
                request_id=data["requestId"],
                tool_name=data.get("toolName") or "",
                command=data.get("command"),
                description=data.get("description"),
            )
        if event_type == "typed_error":
            return TypedError(message=_typed_error_message(data), payload=data)
        if event_type == "complete":
            return Complete()
    except KeyError:
        # Known type missing a required id
        return UnknownAgentEvent(type=event_type, payload=data)

    return UnknownAgentEvent(type=event_type, payload=data)
