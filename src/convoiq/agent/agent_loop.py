"""
Main orchestration loop for ConvoIQ.

One :class:`AgentLoop` drives one agent run: it calls the model with the rolling message history,
streams the reply to the client as it arrives, executes the tool calls the model asks for, feeds
their results back into the history and goes round again until the model stops asking for tools,
the iteration cap is hit, or the model cannot be reached.

States::

    AWAITING_MODEL -> STREAMING -> (EXECUTING_TOOLS -> AWAITING_MODEL)* -> DONE | MAX_ITER | FATAL_ERROR

The transition rules live in :func:`next_state` so they can be checked without any transport.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Sequence,
)

from pydantic import BaseModel

from convoiq.agent.model_client import (
    BaseModelClient,
    ChatMessage,
    ModelChunk,
    ModelClientError,
)
from convoiq.agent.prompts import (
    AGENT_SYSTEM_PROMPT,
    build_agent_user_prompt,
)
from convoiq.agent.tool_call_parser import (
    ToolCallAccumulator,
    ToolCallParseError,
    parse_tool_arguments,
)
from convoiq.agent.tool_executor import (
    ComponentToolExecutor,
    ToolExecutionError,
)
from convoiq.collaborators.tester import ComponentTester
from convoiq.collaborators.transcripts import (
    TranscriptStore,
    TranscriptStoreError,
)
from convoiq.core.events import (
    AgentEvent,
    EventEmitter,
)
from convoiq.core.schema import (
    ComponentDraft,
    ConversationMetadata,
    EditModes,
    PendingToolCall,
    ToolDefinition,
)
from convoiq.tools import get_agent_tools

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 25
MAX_ITERATIONS_WARNING = (
    "Agent reached maximum iterations. Check the component for partial changes."
)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------
class AgentState(str, Enum):
    """Lifecycle of one agent run."""

    AWAITING_MODEL = "awaiting_model"
    STREAMING = "streaming"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    MAX_ITER = "max_iter"
    FATAL_ERROR = "fatal_error"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.DONE, AgentState.MAX_ITER, AgentState.FATAL_ERROR)


def next_state(
    state: AgentState,
    *,
    iteration: int = 0,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    has_tool_calls: bool = False,
    failed: bool = False,
) -> AgentState:
    """
    Return the state that follows *state*.

    Parameters
    ----------
    iteration:
        Number of model calls issued so far (checked when leaving ``AWAITING_MODEL``).
    has_tool_calls:
        Whether the turn that just finished streaming asked for tools.
    failed:
        The model call could not be made or its stream broke.

    Raises
    ------
    ValueError
        If *state* is terminal.
    """
    if state.is_terminal:
        raise ValueError(f"No transition out of terminal state '{state.value}'")
    if failed and state in (AgentState.AWAITING_MODEL, AgentState.STREAMING):
        return AgentState.FATAL_ERROR
    if state is AgentState.AWAITING_MODEL:
        return AgentState.STREAMING if iteration < max_iterations else AgentState.MAX_ITER
    if state is AgentState.STREAMING:
        return AgentState.EXECUTING_TOOLS if has_tool_calls else AgentState.DONE
    return AgentState.AWAITING_MODEL


class AgentRunResult(BaseModel):
    """Outcome of a finished run, for in-process callers."""

    state: AgentState
    draft: ComponentDraft
    iterations: int
    error: Optional[str] = None
    warning: Optional[str] = None


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
class AgentLoop:
    """
    Drives one agent run and yields its events.

    The loop owns *executor* (and therefore the draft) for the whole run.  Model calls and tool
    calls happen strictly one after the other, so the draft never sees two writers.

    Parameters
    ----------
    model_client:
        Streaming model collaborator.
    executor:
        Executes tool calls against the draft.
    tools:
        Tools offered to the model on every call of this run.
    messages:
        Initial history (system instruction + first user message).
    max_iterations:
        Upper bound on model calls.
    chunk_timeout:
        Seconds to wait for the next streamed chunk before giving up on the run.  *None* waits
        forever.
    """

    def __init__(
        self,
        model_client: BaseModelClient,
        executor: ComponentToolExecutor,
        tools: Sequence[ToolDefinition],
        messages: Sequence[ChatMessage],
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        chunk_timeout: float | None = None,
    ) -> None:
        self.model_client = model_client
        self.executor = executor
        self.tools = list(tools)
        self.messages: List[Dict[str, Any]] = [dict(message) for message in messages]
        self.max_iterations = max_iterations
        self.chunk_timeout = chunk_timeout
        self.state = AgentState.AWAITING_MODEL
        self.iteration = 0
        self.result: AgentRunResult | None = None
        self._emitter = EventEmitter()
        self._ids = itertools.count()
        self._pending: List[PendingToolCall] = []
        self._error: str | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def run(self) -> AsyncIterator[AgentEvent]:
        """Run to a terminal state, yielding every event in causal order."""
        if self.state is not AgentState.AWAITING_MODEL or self.iteration:
            raise RuntimeError("AgentLoop.run() can only be called once")

        while not self.state.is_terminal:
            if self.state is AgentState.AWAITING_MODEL:
                self.state = next_state(
                    self.state, iteration=self.iteration, max_iterations=self.max_iterations
                )
                if self.state is AgentState.STREAMING:
                    self.iteration += 1
                    logger.info("Agent iteration %d/%d", self.iteration, self.max_iterations)

            elif self.state is AgentState.STREAMING:
                failed = False
                try:
                    async for event in self._stream_turn():
                        yield event
                except ModelClientError as exc:
                    logger.error("Model call failed: %s", exc)
                    self._error = str(exc)
                    failed = True
                except Exception as exc:  # pylint: disable=broad-except
                    logger.exception("Agent execution failed")
                    self._error = str(exc) or exc.__class__.__name__
                    failed = True
                self.state = next_state(
                    self.state, has_tool_calls=bool(self._pending), failed=failed
                )

            elif self.state is AgentState.EXECUTING_TOOLS:
                async for event in self._execute_tools():
                    yield event
                self.state = next_state(self.state)

        yield self._finish()

    @property
    def draft(self) -> ComponentDraft:
        """Current (last-known) draft."""
        return self.executor.draft

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #
    async def _next_chunk(self, iterator: AsyncIterator[ModelChunk]) -> ModelChunk:
        if self.chunk_timeout is None:
            return await iterator.__anext__()
        try:
            return await asyncio.wait_for(iterator.__anext__(), timeout=self.chunk_timeout)
        except asyncio.TimeoutError as exc:
            raise ModelClientError(
                f"Model stream timed out after {self.chunk_timeout:g}s without data"
            ) from exc

    async def _stream_turn(self) -> AsyncIterator[AgentEvent]:
        """One model call: forward text as it arrives and collect tool-call fragments."""
        self._pending = []
        message_id = f"msg-{next(self._ids)}"
        accumulator = ToolCallAccumulator()
        text_parts: List[str] = []

        yield self._emitter.message_start(message_id)

        iterator = self.model_client.stream(self.messages, self.tools).__aiter__()
        try:
            while True:
                try:
                    chunk = await self._next_chunk(iterator)
                except StopAsyncIteration:
                    break
                if chunk.text:
                    text_parts.append(chunk.text)
                    yield self._emitter.message_chunk(message_id, chunk.text)
                for delta in chunk.tool_calls:
                    accumulator.add(delta.index, delta.id, delta.name, delta.arguments)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

        content = "".join(text_parts)
        yield self._emitter.message_complete(message_id, content)

        calls = accumulator.calls()
        for call in calls:
            if not call.id:
                call.id = f"call-{self.iteration}-{call.index}"

        message: Dict[str, Any] = {"role": "assistant", "content": content}
        if calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in calls
            ]
            logger.info("Agent is using %d tool(s): %s", len(calls), [c.name for c in calls])
        self.messages.append(message)
        self._pending = calls

    def _append_tool_message(self, call: PendingToolCall, result: Dict[str, Any]) -> None:
        self.messages.append(
            {"role": "tool", "tool_call_id": call.id, "content": json.dumps(result, indent=2)}
        )

    async def _execute_tools(self) -> AsyncIterator[AgentEvent]:
        """Run the turn's tool calls in order; a failing call never stops the others."""
        calls, self._pending = self._pending, []

        for call in calls:
            call_event_id = f"tool-{next(self._ids)}"
            try:
                args = parse_tool_arguments(call.arguments)
            except ToolCallParseError as exc:
                logger.warning("Failed to parse tool arguments for %s: %s", call.name, exc)
                failure = {
                    "success": False,
                    "error": str(exc),
                    "rawArguments": exc.raw_arguments,
                }
                self._append_tool_message(call, failure)
                yield self._emitter.tool_call(call_event_id, call.name, call.arguments, call.id)
                yield self._emitter.tool_result(
                    f"result-{next(self._ids)}", call.name, failure, False, call.id
                )
                continue

            yield self._emitter.tool_call(call_event_id, call.name, args, call.id)

            try:
                result = await self.executor.execute(call.name, args)
                success = result.get("success", True) is not False
                logger.info("Tool %s completed (success=%s)", call.name, success)
            except ToolExecutionError as exc:
                logger.warning("Tool execution failed for %s: %s", call.name, exc)
                result = {"success": False, "error": str(exc)}
                success = False

            self._append_tool_message(call, result)
            yield self._emitter.tool_result(
                f"result-{next(self._ids)}", call.name, result, success, call.id
            )

    def _finish(self) -> AgentEvent:
        """Record the result and build the single terminal event."""
        draft = self.draft.model_copy()
        if self.state is AgentState.FATAL_ERROR:
            self.result = AgentRunResult(
                state=self.state, draft=draft, iterations=self.iteration, error=self._error
            )
            return self._emitter.error(self._error or "Agent execution failed")

        if self.state is AgentState.MAX_ITER:
            logger.warning("Agent reached max iterations (%d)", self.max_iterations)
            self.result = AgentRunResult(
                state=self.state,
                draft=draft,
                iterations=self.iteration,
                warning=MAX_ITERATIONS_WARNING,
            )
            return self._emitter.agent_complete(False, draft.to_wire(), MAX_ITERATIONS_WARNING)

        logger.info("Agent conversation complete after %d iteration(s)", self.iteration)
        self.result = AgentRunResult(state=self.state, draft=draft, iterations=self.iteration)
        return self._emitter.agent_complete(True, draft.to_wire())


# ---------------------------------------------------------------------------
# Run setup
# ---------------------------------------------------------------------------
@dataclass
class AgentDependencies:
    """Collaborators and limits shared by every run of the process."""

    model_client: BaseModelClient
    transcripts: TranscriptStore
    tester: ComponentTester
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    chunk_timeout: float | None = None
    default_transcript_chars: int = 5000


async def _fetch_metadata(
    transcripts: TranscriptStore, conversation_id: str
) -> ConversationMetadata | None:
    try:
        return await transcripts.fetch_metadata(conversation_id)
    except TranscriptStoreError as exc:
        logger.warning("Could not fetch conversation metadata: %s", exc)
        return None


async def create_agent_loop(
    deps: AgentDependencies,
    *,
    user_prompt: str,
    current_state: ComponentDraft,
    edit_modes: EditModes,
    conversation_id: str,
    component_title: str = "",
    conversation_title: str = "",
) -> AgentLoop:
    """
    Prepare a run: gate the tools, bind an executor to the draft and build the first messages.

    Conversation metadata is fetched best-effort; a failure only leaves the prompt's details as
    "unknown".
    """
    tools = get_agent_tools(edit_modes)
    executor = ComponentToolExecutor(
        draft=current_state,
        conversation_id=conversation_id,
        transcripts=deps.transcripts,
        tester=deps.tester,
        allowed_tools=[tool.name for tool in tools],
        component_title=component_title,
        default_max_chars=deps.default_transcript_chars,
    )
    metadata = await _fetch_metadata(deps.transcripts, conversation_id)
    messages = [
        {"role": "system", "content": AGENT_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": build_agent_user_prompt(
                user_input=user_prompt,
                component_title=component_title,
                conversation_title=conversation_title,
                current_state=current_state,
                edit_modes=edit_modes,
                metadata=metadata,
            ),
        },
    ]
    logger.debug("Offering tools: %s", [tool.name for tool in tools])
    return AgentLoop(
        model_client=deps.model_client,
        executor=executor,
        tools=tools,
        messages=messages,
        max_iterations=deps.max_iterations,
        chunk_timeout=deps.chunk_timeout,
    )
