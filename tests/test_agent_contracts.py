"""Tests for parse_agent_event — wire objects to typed agent events."""

from agentrelay.agent.contracts import (
    AbortReason,
    Complete,
    Error,
    PermissionRequest,
    TextComplete,
    TextDelta,
    ToolResult,
    ToolStart,
    TypedError,
    UnknownAgentEvent,
    parse_agent_event,
)


def test_abort_reasons():
    assert AbortReason.USER_STOP.value == "UserStop"
    assert AbortReason.REDIRECT.value == "Redirect"


def test_text_events():
    assert parse_agent_event({"type": "text_delta", "text": "Hi", "turnId": "t"}) == TextDelta(
        text="Hi", turn_id="t"
    )
    assert parse_agent_event(
        {"type": "text_complete", "text": "Hi", "isIntermediate": True}
    ) == TextComplete(text="Hi", is_intermediate=True)


def test_tool_start_reads_camel_case_fields():
    event = parse_agent_event(
        {
            "type": "tool_start",
            "toolUseId": "t1",
            "toolName": "Bash",
            "input": {"command": "ls"},
            "parentToolUseId": "p1",
            "intent": "List",
            "displayName": "Shell",
        }
    )
    assert event == ToolStart(
        tool_use_id="t1",
        tool_name="Bash",
        input={"command": "ls"},
        parent_tool_use_id="p1",
        intent="List",
        display_name="Shell",
    )


def test_tool_result():
    event = parse_agent_event(
        {"type": "tool_result", "toolUseId": "t1", "result": "ok", "isError": True}
    )
    assert event == ToolResult(tool_use_id="t1", result="ok", is_error=True)


def test_permission_request_and_error():
    assert parse_agent_event(
        {"type": "permission_request", "requestId": "r1", "toolName": "Bash", "command": "rm x"}
    ) == PermissionRequest(request_id="r1", tool_name="Bash", command="rm x")
    assert parse_agent_event({"type": "error", "message": "boom"}) == Error(message="boom")


def test_typed_error_message_fallbacks():
    nested = {"type": "typed_error", "error": {"message": "Invalid key"}}
    assert parse_agent_event(nested) == TypedError(message="Invalid key", payload=nested)

    flat = {"type": "typed_error", "message": "Rate limited", "code": 429}
    assert parse_agent_event(flat).message == "Rate limited"

    assert parse_agent_event({"type": "typed_error"}).message == "Unknown typed error"


def test_complete():
    assert parse_agent_event({"type": "complete"}) == Complete()


def test_unknown_and_malformed_events():
    assert parse_agent_event({"type": "shell_spawned", "pid": 3}) == UnknownAgentEvent(
        type="shell_spawned", payload={"type": "shell_spawned", "pid": 3}
    )
    # Known type missing its id
    assert isinstance(parse_agent_event({"type": "tool_start"}), UnknownAgentEvent)
    assert isinstance(parse_agent_event({"no": "type"}), UnknownAgentEvent)
