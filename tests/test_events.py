"""Tests for event framing and the one-terminal-event contract."""

import json

import pytest

from convoiq.core.events import (
    EventEmitter,
    EventName,
    ProtocolError,
)


def test_sse_framing() -> None:
    event = EventEmitter().message_chunk("msg-0", "Hel")

    assert event.to_sse() == (
        'event: message_chunk\ndata: {"messageId": "msg-0", "delta": "Hel"}\n\n'
    )


def test_tool_events_carry_call_id() -> None:
    emitter = EventEmitter()
    call = emitter.tool_call("tool-1", "edit_prompt", {"new_prompt": "x"}, "call_9")
    result = emitter.tool_result("result-2", "edit_prompt", {"success": True}, True, "call_9")

    assert call.data == {
        "id": "tool-1",
        "toolName": "edit_prompt",
        "args": {"new_prompt": "x"},
        "toolCallId": "call_9",
    }
    assert result.data["success"] is True
    assert result.data["toolCallId"] == "call_9"


def test_agent_complete_warning_is_optional() -> None:
    state = {"prompt": "p", "structuredOutput": "{}", "uiCode": ""}

    assert "warning" not in EventEmitter().agent_complete(True, state).data
    assert EventEmitter().agent_complete(False, state, "capped").data["warning"] == "capped"


@pytest.mark.parametrize("terminal", ["agent_complete", "error"])
def test_nothing_after_terminal_event(terminal: str) -> None:
    """Once a run has ended the emitter refuses further events."""
    emitter = EventEmitter()
    if terminal == "error":
        event = emitter.error("boom")
    else:
        event = emitter.agent_complete(True, {})
    assert event.is_terminal

    with pytest.raises(ProtocolError):
        emitter.message_start("msg-1")
    with pytest.raises(ProtocolError):
        emitter.error("again")


def test_only_two_terminal_event_names() -> None:
    terminal = {name for name in EventName if EventEmitter().emit(name, {}).is_terminal}

    assert terminal == {EventName.AGENT_COMPLETE, EventName.ERROR}


def test_payload_is_json() -> None:
    frame = EventEmitter().error("quote \" and newline \n").to_sse()
    data_line = frame.split("\n")[1]

    assert json.loads(data_line[len("data: "):]) == {"message": "quote \" and newline \n"}
