"""Tests for the model client registry and the provider message conversion."""

import pytest

from convoiq.agent.model_client import (
    AnthropicModelClient,
    ModelClientError,
    OpenAIModelClient,
    _to_anthropic_messages,
    load_model_client,
)
from convoiq.config import Settings

HISTORY = [
    {"role": "system", "content": "You are helpful."},
    {"role": "user", "content": "Shorten the prompt"},
    {
        "role": "assistant",
        "content": "Reading first.",
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "read_current_component", "arguments": ""},
            },
            {
                "id": "call_2",
                "type": "function",
                "function": {"name": "edit_prompt", "arguments": '{"new_prompt": "x"}'},
            },
        ],
    },
    {"role": "tool", "tool_call_id": "call_1", "content": "{}"},
    {"role": "tool", "tool_call_id": "call_2", "content": '{"success": true}'},
]


def test_anthropic_conversion() -> None:
    system, messages = _to_anthropic_messages(HISTORY)

    assert system == "You are helpful."
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    text, first, second = messages[1]["content"]
    assert text == {"type": "text", "text": "Reading first."}
    assert first["input"] == {}
    assert second == {
        "type": "tool_use",
        "id": "call_2",
        "name": "edit_prompt",
        "input": {"new_prompt": "x"},
    }
    # Both results of the turn travel in one user message.
    assert [block["tool_use_id"] for block in messages[2]["content"]] == ["call_1", "call_2"]


def test_anthropic_conversion_rejects_unknown_role() -> None:
    with pytest.raises(ModelClientError, match="Unsupported message role"):
        _to_anthropic_messages([{"role": "function", "content": ""}])


def test_load_model_client_by_provider() -> None:
    settings = Settings(MODEL_PROVIDER="anthropic", ANTHROPIC_API_KEY=None)

    assert isinstance(load_model_client(settings), AnthropicModelClient)
    assert isinstance(load_model_client(settings, "OpenAI"), OpenAIModelClient)


def test_load_model_client_unknown_provider() -> None:
    with pytest.raises(ValueError, match="not registered"):
        load_model_client(Settings(), "gemini")


def test_openrouter_base_url_uses_openrouter_key() -> None:
    settings = Settings(
        MODEL_BASE_URL="https://openrouter.ai/api/v1",
        OPENROUTER_API_KEY="sk-or-test",
        OPENAI_API_KEY=None,
    )

    client = load_model_client(settings, "openai")

    assert client._client is not None  # pylint: disable=protected-access


@pytest.mark.asyncio
async def test_stream_without_key_raises() -> None:
    client = AnthropicModelClient(model="claude", api_key=None)

    with pytest.raises(ModelClientError, match="ANTHROPIC_API_KEY"):
        async for _ in client.stream([{"role": "user", "content": "hi"}], []):
            pass
