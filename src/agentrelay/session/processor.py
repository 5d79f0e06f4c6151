"""
Event Processor — one agent event in, state mutation plus outward events out.

process_agent_event() is the turn state machine. It mutates the given
ManagedSessionState in place and returns the SessionEvents to publish, in
order. It never publishes and never raises for an unrecognised event.

Tool nesting:
  Container tools (Task, TaskOutput) host the tool calls that follow them.
  A container is pushed onto parent_tool_stack on start and removed by
  value on result, since agents may close containers out of order. A
  nested tool's parent is the id the agent supplied, else the current
  stack top. Containers themselves never get a parent.
"""

from __future__ import annotations

import json
import logging

from agentrelay.agent import contracts as agent
from agentrelay.events import contracts as events
from agentrelay.session.models import (
    ManagedSessionState,
    Message,
    MessageRole,
    ToolStatus,
)

logger = logging.getLogger(__name__)

CONTAINER_TOOLS = frozenset({"Task", "TaskOutput"})


def process_agent_event(
    state: ManagedSessionState, event: agent.AgentEvent
) -> list[events.SessionEvent]:
    session_id = state.id

    if isinstance(event, agent.TextDelta):
        if state.streaming_text == "":
            state.pending_text_parent = (
                state.parent_tool_stack[-1] if state.parent_tool_stack else None
            )
        state.streaming_text += event.text
        return [
            events.TextDelta(session_id=session_id, delta=event.text, turn_id=event.turn_id)
        ]

    if isinstance(event, agent.TextComplete):
        parent = state.pending_text_parent if event.is_intermediate else None
        state.messages.append(
            Message(
                role=MessageRole.ASSISTANT.value,
                content=event.text,
                is_intermediate=event.is_intermediate,
                turn_id=event.turn_id,
                parent_tool_use_id=parent,
            )
        )
        state.streaming_text = ""
        state.pending_text_parent = None
        return [
            events.TextComplete(
                session_id=session_id,
                text=event.text,
                is_intermediate=event.is_intermediate,
                turn_id=event.turn_id,
                parent_tool_use_id=parent,
            )
        ]

    if isinstance(event, agent.ToolStart):
        return [_tool_start(state, event)]

    if isinstance(event, agent.ToolResult):
        return [_tool_result(state, event)]

    if isinstance(event, agent.Status):
        return [events.Status(session_id=session_id, message=event.message)]

    if isinstance(event, agent.Info):
        return [events.Info(session_id=session_id, message=event.message)]

    if isinstance(event, agent.Error):
        return [events.Error(session_id=session_id, error=event.message)]

    if isinstance(event, agent.ThinkingDelta):
        return [
            events.ThinkingDelta(
                session_id=session_id, delta=event.text, turn_id=event.turn_id
            )
        ]

    if isinstance(event, agent.ThinkingComplete):
        return [
            events.ThinkingComplete(
                session_id=session_id, text=event.text, turn_id=event.turn_id
            )
        ]

    if isinstance(event, agent.PermissionRequest):
        return [
            events.PermissionRequest(
                session_id=session_id,
                request_id=event.request_id,
                tool_name=event.tool_name,
                command=event.command,
                description=event.description,
            )
        ]

    if isinstance(event, agent.TypedError):
        logger.warning(
            "Typed error in session %s: %s",
            session_id,
            json.dumps(event.payload, default=str),
            extra={"session_id": session_id, "event_type": "typed_error"},
        )
        return [events.Error(session_id=session_id, error=event.message)]

    if isinstance(event, agent.Complete):
        # Terminal; the coordinator closes the turn
        return []

    event_type = getattr(event, "type", type(event).__name__)
    payload = event.payload if isinstance(event, agent.UnknownAgentEvent) else event
    logger.info(
        "Unhandled agent event %s in session %s: %s",
        event_type,
        session_id,
        payload,
        extra={"session_id": session_id, "event_type": event_type},
    )
    return []


def _tool_start(
    state: ManagedSessionState, event: agent.ToolStart
) -> events.ToolStart:
    state.pending_tools[event.tool_use_id] = event.tool_name

    is_container = event.tool_name in CONTAINER_TOOLS
    parent: str | None
    if is_container:
        parent = None
    elif event.parent_tool_use_id:
        parent = event.parent_tool_use_id
    elif state.parent_tool_stack:
        parent = state.parent_tool_stack[-1]
    else:
        parent = None

    if is_container:
        state.parent_tool_stack.append(event.tool_use_id)
    if parent:
        state.tool_to_parent_map[event.tool_use_id] = parent

    state.messages.append(
        Message(
            role=MessageRole.TOOL.value,
            content=f"Running {event.tool_name}...",
            tool_name=event.tool_name,
            tool_use_id=event.tool_use_id,
            tool_input=event.input,
            tool_status=ToolStatus.PENDING.value,
            tool_intent=event.intent,
            tool_display_name=event.display_name,
            turn_id=event.turn_id,
            parent_tool_use_id=parent,
        )
    )

    return events.ToolStart(
        session_id=state.id,
        tool_name=event.tool_name,
        tool_use_id=event.tool_use_id,
        tool_input=event.input or {},
        tool_intent=event.intent,
        tool_display_name=event.display_name,
        turn_id=event.turn_id,
        parent_tool_use_id=parent,
    )


def _tool_result(
    state: ManagedSessionState, event: agent.ToolResult
) -> events.ToolResult:
    tool_name = state.pending_tools.pop(event.tool_use_id, None) or "unknown"

    if event.tool_use_id in state.parent_tool_stack:
        state.parent_tool_stack.remove(event.tool_use_id)

    stored_parent = state.tool_to_parent_map.pop(event.tool_use_id, None)

    existing = state.find_tool_message(event.tool_use_id)
    if existing is not None:
        existing.content = event.result or ""
        existing.tool_result = event.result
        existing.tool_status = ToolStatus.COMPLETED.value
        existing.is_error = event.is_error
    else:
        logger.debug(
            "tool_result for unknown tool %s in session %s",
            event.tool_use_id,
            state.id,
        )

    parent = (existing.parent_tool_use_id if existing else None) or stored_parent

    return events.ToolResult(
        session_id=state.id,
        tool_use_id=event.tool_use_id,
        tool_name=tool_name,
        result=event.result or "",
        turn_id=event.turn_id,
        parent_tool_use_id=parent,
        is_error=event.is_error,
    )
