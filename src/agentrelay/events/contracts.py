"""
Session Events — the outward conversation timeline pushed to viewers.

Every event is a flat JSON object with a `type` discriminant and a
`sessionId`. Field names are snake_case here and camelCase on the wire;
fields whose value is None are left out entirely.

    event = ToolStart(session_id="s1", tool_name="Read", tool_use_id="t2")
    event.to_dict()
    # {"type": "tool_start", "sessionId": "s1", "toolName": "Read",
    #  "toolUseId": "t2", "toolInput": {}}
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Union


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass
class _SessionEvent:
    type: ClassVar[str] = ""

    session_id: str

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                data[_camel(f.name)] = value
        return data


@dataclass
class UserMessage(_SessionEvent):
    type: ClassVar[str] = "user_message"

    message: dict[str, Any] = field(default_factory=dict)
    status: str = "accepted"


@dataclass
class TextDelta(_SessionEvent):
    type: ClassVar[str] = "text_delta"

    delta: str = ""
    turn_id: str | None = None


@dataclass
class TextComplete(_SessionEvent):
    type: ClassVar[str] = "text_complete"

    text: str = ""
    is_intermediate: bool | None = None
    turn_id: str | None = None
    parent_tool_use_id: str | None = None


@dataclass
class ToolStart(_SessionEvent):
    type: ClassVar[str] = "tool_start"

    tool_name: str = ""
    tool_use_id: str = ""
    tool_input: dict[str, Any] = field(default_factory=dict)
    tool_intent: str | None = None
    tool_display_name: str | None = None
    turn_id: str | None = None
    parent_tool_use_id: str | None = None


@dataclass
class ToolResult(_SessionEvent):
    type: ClassVar[str] = "tool_result"

    tool_use_id: str = ""
    tool_name: str = "unknown"
    result: str = ""
    turn_id: str | None = None
    parent_tool_use_id: str | None = None
    is_error: bool | None = None


@dataclass
class Status(_SessionEvent):
    type: ClassVar[str] = "status"

    message: str = ""


@dataclass
class Info(_SessionEvent):
    type: ClassVar[str] = "info"

    message: str = ""


@dataclass
class Error(_SessionEvent):
    type: ClassVar[str] = "error"

    error: str = ""


@dataclass
class ThinkingDelta(_SessionEvent):
    type: ClassVar[str] = "thinking_delta"

    delta: str = ""
    turn_id: str | None = None


@dataclass
class ThinkingComplete(_SessionEvent):
    type: ClassVar[str] = "thinking_complete"

    text: str = ""
    turn_id: str | None = None


@dataclass
class PermissionRequest(_SessionEvent):
    type: ClassVar[str] = "permission_request"

    request_id: str = ""
    tool_name: str = ""
    command: str | None = None
    description: str | None = None


@dataclass
class Complete(_SessionEvent):
    type: ClassVar[str] = "complete"


SessionEvent = Union[
    UserMessage,
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
    Complete,
]
