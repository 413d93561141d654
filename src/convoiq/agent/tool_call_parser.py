"""
Reassembly and parsing of streamed tool calls.

A streaming model response describes each tool call in fragments tagged with a position index:
the id and name usually arrive first, the JSON arguments trickle in piece by piece, and fragments
of different calls may be interleaved.  :class:`ToolCallAccumulator` glues the fragments back
together per index; :func:`parse_tool_arguments` turns the finished argument text into keyword
arguments for the executor.
"""

import json
from typing import (
    Any,
    Dict,
    List,
)

from convoiq.core.schema import PendingToolCall


class ToolCallParseError(ValueError):
    """Raised when a tool call's argument text is not a JSON object."""

    def __init__(self, message: str, raw_arguments: str) -> None:
        super().__init__(message)
        self.raw_arguments = raw_arguments


class ToolCallAccumulator:
    """Sparse map from position index to the tool call being assembled there."""

    def __init__(self) -> None:
        self._pending: Dict[int, PendingToolCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __bool__(self) -> bool:
        return bool(self._pending)

    def add(
        self,
        index: int,
        call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> PendingToolCall:
        """
        Fold one fragment into the call at *index*.

        An id replaces the previous one; name and argument pieces are appended in arrival order.
        """
        pending = self._pending.get(index)
        if pending is None:
            pending = PendingToolCall(index=index)
            self._pending[index] = pending
        if call_id:
            pending.id = call_id
        if name:
            pending.name += name
        if arguments:
            pending.arguments += arguments
        return pending

    def calls(self) -> List[PendingToolCall]:
        """Completed calls ordered by position index."""
        return [self._pending[index] for index in sorted(self._pending)]


def parse_tool_arguments(text: str) -> Dict[str, Any]:
    """
    Parse the argument text of a tool call.

    Empty or whitespace-only text means "no arguments".

    Raises
    ------
    ToolCallParseError
        If the text is not valid JSON or does not decode to an object.
    """
    if not text or not text.strip():
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(f"Failed to parse arguments: {exc}", text) from exc
    if not isinstance(value, dict):
        raise ToolCallParseError(
            f"Failed to parse arguments: expected a JSON object, got {type(value).__name__}", text
        )
    return value
