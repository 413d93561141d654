"""
Events streamed from an agent run to the client, and their ``text/event-stream`` framing.

Each event is a name plus a small JSON payload.  One run produces its events strictly in causal
order and ends with exactly one terminal event, ``agent_complete`` or ``error``.
:class:`EventEmitter` builds the events of one run and enforces that contract.

Wire format of one frame::

    event: <name>\\n
    data: <json>\\n
    \\n
"""

import json
from enum import Enum
from typing import (
    Any,
    Dict,
    Mapping,
)

from pydantic import (
    BaseModel,
    ConfigDict,
)


class ProtocolError(RuntimeError):
    """Raised when an event sequence breaks the streaming contract."""


class EventName(str, Enum):
    """Names of the events of the run stream."""

    MESSAGE_START = "message_start"
    MESSAGE_CHUNK = "message_chunk"
    MESSAGE_COMPLETE = "message_complete"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    AGENT_COMPLETE = "agent_complete"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventName.AGENT_COMPLETE, EventName.ERROR})


class AgentEvent(BaseModel):
    """One event of the run stream."""

    model_config = ConfigDict(frozen=True)

    name: EventName
    data: Dict[str, Any]

    @property
    def is_terminal(self) -> bool:
        """True for the event that ends a run."""
        return self.name in TERMINAL_EVENTS

    def to_sse(self) -> str:
        """Frame the event for a ``text/event-stream`` response."""
        return f"event: {self.name.value}\ndata: {json.dumps(self.data)}\n\n"


class EventEmitter:
    """Builds the events of one run and refuses anything after the terminal event."""

    def __init__(self) -> None:
        self.count = 0
        self.closed = False

    def emit(self, name: EventName, data: Mapping[str, Any]) -> AgentEvent:
        """Return the next event of the run."""
        if self.closed:
            raise ProtocolError(f"Cannot emit '{name.value}': the run already ended")
        event = AgentEvent(name=name, data=dict(data))
        self.count += 1
        if event.is_terminal:
            self.closed = True
        return event

    def message_start(self, message_id: str) -> AgentEvent:
        return self.emit(EventName.MESSAGE_START, {"messageId": message_id})

    def message_chunk(self, message_id: str, delta: str) -> AgentEvent:
        return self.emit(EventName.MESSAGE_CHUNK, {"messageId": message_id, "delta": delta})

    def message_complete(self, message_id: str, content: str) -> AgentEvent:
        return self.emit(EventName.MESSAGE_COMPLETE, {"messageId": message_id, "content": content})

    def tool_call(
        self, event_id: str, tool_name: str, args: Any, tool_call_id: str | None = None
    ) -> AgentEvent:
        return self.emit(
            EventName.TOOL_CALL,
            {"id": event_id, "toolName": tool_name, "args": args, "toolCallId": tool_call_id},
        )

    def tool_result(
        self,
        event_id: str,
        tool_name: str,
        result: Any,
        success: bool,
        tool_call_id: str | None = None,
    ) -> AgentEvent:
        return self.emit(
            EventName.TOOL_RESULT,
            {
                "id": event_id,
                "toolName": tool_name,
                "result": result,
                "success": success,
                "toolCallId": tool_call_id,
            },
        )

    def agent_complete(
        self, success: bool, updated_state: Mapping[str, str], warning: str | None = None
    ) -> AgentEvent:
        data: Dict[str, Any] = {"success": success, "updatedState": dict(updated_state)}
        if warning:
            data["warning"] = warning
        return self.emit(EventName.AGENT_COMPLETE, data)

    def error(self, message: str) -> AgentEvent:
        return self.emit(EventName.ERROR, {"message": message})
