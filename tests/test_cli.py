"""Tests for the terminal client, with the API mocked by httpx."""

import json

import httpx
import pytest

from convoiq.client.cli import (
    AgentSession,
    parse_modes,
)
from convoiq.core.events import EventEmitter
from convoiq.core.schema import (
    ComponentDraft,
    MessageKind,
)

UPDATED = {"prompt": "Short", "structuredOutput": "{}", "uiCode": ""}


def _body(*events) -> str:
    return "".join(event.to_sse() for event in events) + "\n"


def _session(handler) -> AgentSession:
    return AgentSession(
        api_url="http://api.test/",
        component_id="cmp-1",
        conversation_id="conv-1",
        draft=ComponentDraft(prompt="A long prompt"),
        transport=httpx.MockTransport(handler),
    )


def test_parse_modes() -> None:
    modes = parse_modes(["prompt", "UI"])

    assert (modes.edit_prompt, modes.edit_data, modes.edit_ui_code) == (True, False, True)
    with pytest.raises(ValueError, match="schema"):
        parse_modes(["schema"])


def test_run_prompt_builds_round_and_applies_state() -> None:
    emitter = EventEmitter()
    body = _body(
        emitter.message_start("msg-0"),
        emitter.message_chunk("msg-0", "On "),
        emitter.message_chunk("msg-0", "it."),
        emitter.message_complete("msg-0", "On it."),
        emitter.tool_call("tool-1", "edit_prompt", {"new_prompt": "Short"}, "call_1"),
        emitter.tool_result("result-2", "edit_prompt", {"success": True}, True, "call_1"),
        emitter.agent_complete(True, UPDATED),
    )
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        assert request.url.path == "/RunAgent"
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    session = _session(handler)
    consumer = session.run_prompt("Shorten it", echo=False)

    assert requests[0]["userPrompt"] == "Shorten it"
    assert requests[0]["currentState"]["prompt"] == "A long prompt"
    assert consumer.finished and consumer.success is True
    assert session.draft.prompt == "Short"
    round_ = session.rounds.latest
    assert [m.kind for m in round_.messages] == [
        MessageKind.ASSISTANT_TEXT,
        MessageKind.TOOL_CALL,
        MessageKind.TOOL_RESULT,
    ]
    assert round_.messages[0].content == "On it."


def test_truncated_stream_is_recorded_as_error() -> None:
    emitter = EventEmitter()
    body = _body(emitter.message_start("msg-0"))
    session = _session(lambda request: httpx.Response(200, text=body))

    consumer = session.run_prompt("Hi", echo=False)

    assert consumer.error == "Stream ended before the agent finished"
    assert session.draft.prompt == "A long prompt"


def test_http_error_is_recorded_as_error() -> None:
    session = _session(lambda request: httpx.Response(500, text="boom"))

    consumer = session.run_prompt("Hi", echo=False)

    assert consumer.finished
    assert consumer.error.startswith("Agent request failed")


def test_connection_refused_gives_up_after_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    consumer = _session(handler).run_prompt("Hi", max_retries=1, echo=False)

    assert consumer.error.startswith("Error connecting to API")


def test_each_prompt_is_a_new_round() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=_body(EventEmitter().agent_complete(True, UPDATED)))

    session = _session(handler)
    session.run_prompt("one", echo=False)
    session.run_prompt("two", echo=False)

    assert [r.user_prompt for r in session.rounds] == ["one", "two"]


def test_publish_writes_draft(tmp_path) -> None:
    session = _session(lambda request: httpx.Response(500))
    path = session.publish(tmp_path / "component.json")

    assert json.loads(path.read_text(encoding="utf-8"))["prompt"] == "A long prompt"


@pytest.mark.parametrize(
    "body",
    [
        'event: tool_call\ndata: {"toolName": "edit_prompt"}\n\n\n',
        'event: message_start\ndata: {"messageId": "msg-0"}\n\n'
        'event: message_start\ndata: {"messageId": "msg-0"}\n\n\n',
        'event: agent_complete\ndata: {"success": true, "updatedState": {"prompt": null}}\n\n\n',
    ],
)
def test_malformed_event_is_recorded_as_error(body: str) -> None:
    """A payload the client cannot fold ends the round with an error, not a crash."""
    session = _session(lambda request: httpx.Response(200, text=body))

    consumer = session.run_prompt("Hi", echo=False)

    assert consumer.finished
    assert consumer.error.startswith("Malformed agent event")
    assert session.rounds.latest.messages[-1].kind is MessageKind.ERROR
    assert session.draft.prompt == "A long prompt"
