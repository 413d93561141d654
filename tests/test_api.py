"""
Tests for the HTTP API, with the model replaced by a scripted fake.

Run with:
$ pytest -q
"""

from fastapi.testclient import TestClient

from convoiq.agent.model_client import ModelClientError
from convoiq.api.app import create_app
from convoiq.client.stream import SSEParser
from convoiq.config import Settings
from tests.fakes import (
    FakeModelClient,
    make_deps,
    text_turn,
    tool_turn,
)

REQUEST = {
    "componentId": "cmp-1",
    "componentTitle": "Summary",
    "conversationId": "conv-1",
    "conversationTitle": "Weekly sync",
    "userPrompt": "Make the prompt shorter",
    "currentState": {"prompt": "A long prompt", "structuredOutput": "{}", "uiCode": ""},
    "editModes": {"editPrompt": True, "editData": False, "editUICode": False},
}


def _client(model: FakeModelClient) -> TestClient:
    return TestClient(create_app(Settings(), deps=make_deps(model)))


def _events(body: str):
    return SSEParser().feed(body)


def test_health() -> None:
    response = _client(FakeModelClient()).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_tools_for_edit_modes() -> None:
    response = _client(FakeModelClient()).post("/agent/tools", json={"editUICode": True})

    assert response.status_code == 200
    assert response.json()["tools"] == [
        "read_current_component",
        "get_conversation_transcript",
        "test_component",
        "edit_ui_code",
    ]


def test_run_agent_streams_events() -> None:
    model = FakeModelClient(
        [
            tool_turn("edit_prompt", {"new_prompt": "Short", "reasoning": "asked"}),
            text_turn("Shortened."),
        ]
    )
    with _client(model).stream("POST", "/RunAgent", json=REQUEST) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        body = "".join(response.iter_text())

    events = _events(body)
    names = [name for name, _ in events]
    assert names[-1] == "agent_complete"
    assert names.count("agent_complete") == 1
    assert "tool_call" in names and "tool_result" in names
    assert events[-1][1]["updatedState"]["prompt"] == "Short"
    assert model.calls[0]["tools"] == [
        "read_current_component",
        "get_conversation_transcript",
        "test_component",
        "edit_prompt",
    ]


def test_run_agent_model_failure_ends_with_error() -> None:
    model = FakeModelClient(error=ModelClientError("Model call failed: quota"))
    response = _client(model).post("/RunAgent", json=REQUEST)

    events = _events(response.text)
    assert events[-1] == ("error", {"message": "Model call failed: quota"})
    assert "agent_complete" not in [name for name, _ in events]


def test_run_agent_rejects_missing_fields() -> None:
    payload = dict(REQUEST)
    del payload["conversationId"]
    response = _client(FakeModelClient()).post("/RunAgent", json=payload)

    assert response.status_code == 422


def test_run_agent_rejects_empty_prompt() -> None:
    response = _client(FakeModelClient()).post("/RunAgent", json=dict(REQUEST, userPrompt=""))

    assert response.status_code == 422
