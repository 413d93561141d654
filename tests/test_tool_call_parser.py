"""Tests for streamed tool-call reassembly and argument parsing."""

import pytest

from convoiq.agent.tool_call_parser import (
    ToolCallAccumulator,
    ToolCallParseError,
    parse_tool_arguments,
)


def test_interleaved_fragments_stay_with_their_index() -> None:
    """Fragments of two calls arriving interleaved are concatenated per index."""
    acc = ToolCallAccumulator()
    acc.add(1, call_id="call_b", name="edit_")
    acc.add(0, call_id="call_a", name="read_current_")
    acc.add(1, name="prompt", arguments='{"new_prompt": "Sh')
    acc.add(0, name="component", arguments="{")
    acc.add(1, arguments='orter", "reasoning": "asked"}')
    acc.add(0, arguments="}")

    first, second = acc.calls()
    assert (first.index, first.id, first.name, first.arguments) == (
        0,
        "call_a",
        "read_current_component",
        "{}",
    )
    assert (second.index, second.id, second.name) == (1, "call_b", "edit_prompt")
    assert parse_tool_arguments(second.arguments) == {
        "new_prompt": "Shorter",
        "reasoning": "asked",
    }


def test_sparse_indices_are_ordered() -> None:
    """Indices need not be dense; calls come back sorted by index."""
    acc = ToolCallAccumulator()
    acc.add(5, name="b")
    acc.add(2, name="a")

    assert [call.index for call in acc.calls()] == [2, 5]
    assert len(acc) == 2


def test_later_id_replaces_earlier() -> None:
    """Ids are not concatenated."""
    acc = ToolCallAccumulator()
    acc.add(0, call_id="first")
    acc.add(0, call_id="second")

    assert acc.calls()[0].id == "second"


def test_empty_accumulator_is_falsy() -> None:
    assert not ToolCallAccumulator()


@pytest.mark.parametrize("text", ["", "   "])
def test_blank_arguments_mean_no_arguments(text: str) -> None:
    assert parse_tool_arguments(text) == {}


def test_invalid_json_keeps_raw_text() -> None:
    """A parse failure carries the raw text for the model to see."""
    with pytest.raises(ToolCallParseError) as info:
        parse_tool_arguments('{"new_prompt": "unterminated')

    assert info.value.raw_arguments == '{"new_prompt": "unterminated'
    assert "Failed to parse arguments" in str(info.value)


def test_non_object_json_rejected() -> None:
    with pytest.raises(ToolCallParseError, match="expected a JSON object"):
        parse_tool_arguments("[1, 2]")
