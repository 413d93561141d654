"""
Client side of the run stream.

:class:`SSEParser` turns ``text/event-stream`` text back into ``(event, data)`` pairs, whatever
the chunking of the transport.  :class:`RoundStreamConsumer` folds those events, strictly in
arrival order, into the active round of a :class:`ConversationRoundStore`.
"""

import json
import logging
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
)

from convoiq.client.rounds import ConversationRoundStore
from convoiq.core.events import (
    EventName,
    ProtocolError,
    TERMINAL_EVENTS,
)
from convoiq.core.schema import (
    AgentMessage,
    ComponentDraft,
    MessageKind,
)

logger = logging.getLogger(__name__)

SSEEvent = Tuple[str, Any]


class SSEParser:
    """Incremental parser for ``event:`` / ``data:`` frames separated by blank lines."""

    def __init__(self) -> None:
        self._buffer = ""
        self._event: Optional[str] = None
        self._data: List[str] = []

    def feed(self, text: str) -> List[SSEEvent]:
        """Consume a raw chunk of the stream and return the events it completes."""
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        events: List[SSEEvent] = []
        for line in lines:
            event = self.feed_line(line)
            if event is not None:
                events.append(event)
        return events

    def feed_line(self, line: str) -> Optional[SSEEvent]:
        """Consume one line (without its newline); return an event when a frame ends."""
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None  # comment / keep-alive
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value.strip()
        elif field == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        name, data = self._event, self._data
        self._event, self._data = None, []
        if not name or not data:
            return None
        raw = "\n".join(data)
        try:
            return name, json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Failed to parse SSE data for '%s': %s", name, raw)
            return None


class RoundStreamConsumer:
    """
    Applies the events of one run to one round.

    Parameters
    ----------
    store:
        Round history to write into.
    round_id:
        The round opened for this run.
    on_state_change:
        Called with the final draft when ``agent_complete`` arrives.
    """

    def __init__(
        self,
        store: ConversationRoundStore,
        round_id: str,
        on_state_change: Callable[[ComponentDraft], None] | None = None,
    ) -> None:
        self.store = store
        self.round_id = round_id
        self.on_state_change = on_state_change
        self.updated_state: ComponentDraft | None = None
        self.success: bool | None = None
        self.warning: str | None = None
        self.error: str | None = None
        self.finished = False
        self._texts: Dict[str, str] = {}
        self._errors = 0
        self._handlers: Dict[EventName, Callable[[Dict[str, Any]], None]] = {
            EventName.MESSAGE_START: self._on_message_start,
            EventName.MESSAGE_CHUNK: self._on_message_chunk,
            EventName.MESSAGE_COMPLETE: self._on_message_complete,
            EventName.TOOL_CALL: self._on_tool_call,
            EventName.TOOL_RESULT: self._on_tool_result,
            EventName.AGENT_COMPLETE: self._on_agent_complete,
            EventName.ERROR: self._on_error,
        }

    def apply(self, name: str, data: Dict[str, Any]) -> None:
        """
        Fold one event into the round.

        Raises
        ------
        ProtocolError
            For unknown events, events after the terminal one, or chunks of a message that was
            never started.
        """
        if self.finished:
            raise ProtocolError(f"Received '{name}' after the run ended")
        try:
            event = EventName(name)
        except ValueError as exc:
            raise ProtocolError(f"Unknown event '{name}'") from exc
        self._handlers[event](data)
        if event in TERMINAL_EVENTS:
            self.finished = True

    def fail(self, message: str) -> None:
        """Record a client-side failure (e.g. a dropped connection) in the round."""
        if not self.finished:
            self._on_error({"message": message})
            self.finished = True

    # ------------------------------------------------------------------ #
    # Event handlers
    # ------------------------------------------------------------------ #
    def _append(self, message: AgentMessage) -> None:
        self.store.append_message(self.round_id, message)

    def _on_message_start(self, data: Dict[str, Any]) -> None:
        message_id = data["messageId"]
        self._texts[message_id] = ""
        self._append(AgentMessage(id=message_id, kind=MessageKind.ASSISTANT_TEXT))

    def _on_message_chunk(self, data: Dict[str, Any]) -> None:
        message_id = data["messageId"]
        if message_id not in self._texts:
            raise ProtocolError(f"Chunk for message '{message_id}' before its message_start")
        self._texts[message_id] += data["delta"]
        self.store.replace_content(self.round_id, message_id, self._texts[message_id])

    def _on_message_complete(self, data: Dict[str, Any]) -> None:
        message_id = data["messageId"]
        content = data.get("content", "")
        if message_id not in self._texts:
            raise ProtocolError(f"Completion of message '{message_id}' before its message_start")
        if self._texts[message_id] != content:
            logger.warning("Streamed text of %s differs from its final content", message_id)
            self._texts[message_id] = content
            self.store.replace_content(self.round_id, message_id, content)

    def _on_tool_call(self, data: Dict[str, Any]) -> None:
        self._append(
            AgentMessage(
                id=data["id"],
                kind=MessageKind.TOOL_CALL,
                content=data["toolName"],
                metadata={
                    "toolName": data["toolName"],
                    "args": data.get("args"),
                    "toolCallId": data.get("toolCallId"),
                },
            )
        )

    def _on_tool_result(self, data: Dict[str, Any]) -> None:
        self._append(
            AgentMessage(
                id=data["id"],
                kind=MessageKind.TOOL_RESULT,
                content=json.dumps(data.get("result"), indent=2),
                metadata={
                    "toolName": data["toolName"],
                    "result": data.get("result"),
                    "success": data.get("success"),
                    "toolCallId": data.get("toolCallId"),
                },
            )
        )

    def _on_agent_complete(self, data: Dict[str, Any]) -> None:
        self.success = bool(data.get("success"))
        self.warning = data.get("warning")
        if data.get("updatedState") is not None:
            self.updated_state = ComponentDraft.model_validate(data["updatedState"])
            if self.on_state_change is not None:
                self.on_state_change(self.updated_state)

    def _on_error(self, data: Dict[str, Any]) -> None:
        self._errors += 1
        self.error = data.get("message", "Unknown error")
        self._append(
            AgentMessage(id=f"error-{self._errors}", kind=MessageKind.ERROR, content=self.error)
        )
