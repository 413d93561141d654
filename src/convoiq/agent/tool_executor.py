"""Executes agent tool calls against an in-memory component draft and wraps errors."""

import json
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
)

from pydantic import ValidationError

from convoiq.collaborators.tester import ComponentTester
from convoiq.collaborators.transcripts import (
    TranscriptStore,
    TranscriptStoreError,
)
from convoiq.core.schema import (
    ComponentDraft,
    TestKind,
)

logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = (
    "\n\n[... transcript truncated. Call again with higher max_chars to see more ...]"
)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


class ComponentToolExecutor:
    """
    Holds the draft being edited during one agent run and executes tool calls against it.

    Edits only touch the in-memory draft; persisting it is the caller's business once the user
    publishes.  The executor is owned by a single run and is not safe to share between runs.

    Parameters
    ----------
    draft:
        Starting state.  The executor works on its own copy.
    conversation_id:
        Grounding conversation used by the transcript and test tools.
    transcripts, tester:
        External collaborators.
    allowed_tools:
        Names of the tools offered to the model for this run.  Any other name is refused.  *None*
        allows every known tool.
    component_title:
        Returned by ``read_current_component`` for context.
    default_max_chars:
        Transcript slice length when the model does not ask for a specific one.
    """

    def __init__(
        self,
        draft: ComponentDraft,
        conversation_id: str,
        transcripts: TranscriptStore,
        tester: ComponentTester,
        allowed_tools: Iterable[str] | None = None,
        component_title: str = "",
        default_max_chars: int = 5000,
    ) -> None:
        self.draft = draft.model_copy()
        self.conversation_id = conversation_id
        self.component_title = component_title
        self.default_max_chars = default_max_chars
        self._transcripts = transcripts
        self._tester = tester
        self._handlers: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
            "read_current_component": self.read_current_component,
            "get_conversation_transcript": self.get_conversation_transcript,
            "test_component": self.test_component,
            "edit_prompt": self.edit_prompt,
            "edit_structured_output": self.edit_structured_output,
            "edit_ui_code": self.edit_ui_code,
        }
        self._allowed = set(allowed_tools) if allowed_tools is not None else set(self._handlers)

    async def execute(self, name: str, args: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """
        Look up *name* and invoke it with *args*.

        Returns
        -------
        dict
            The tool's JSON-serialisable result.

        Raises
        ------
        ToolExecutionError
            If the tool is unknown, was not offered this run, or its invocation fails.
        """
        if args is None:
            args = {}

        handler = self._handlers.get(name)
        if handler is None:
            raise ToolExecutionError(f"Unknown tool: {name}")
        if name not in self._allowed:
            raise ToolExecutionError(
                f"Tool '{name}' is not available in this run. Its edit mode is disabled."
            )

        try:
            logger.debug("Executing tool '%s' with args=%s", name, args)
            return await handler(**args)
        except ToolExecutionError:
            raise
        except (TypeError, ValidationError) as exc:
            # Argument mismatch - give the caller a clean exception.
            logger.warning("Argument error while executing tool '%s': %s", name, exc)
            raise ToolExecutionError(f"Invalid arguments for tool '{name}': {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error in tool '%s'", name)
            raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Read-only tools
    # ------------------------------------------------------------------ #
    async def read_current_component(self) -> Dict[str, Any]:
        """Snapshot of the draft."""
        return {
            "prompt": self.draft.prompt,
            "structuredOutput": self.draft.structured_output,
            "uiCode": self.draft.ui_code,
            "title": self.component_title,
        }

    async def get_conversation_transcript(
        self, max_chars: int | float | None = None
    ) -> Dict[str, Any]:
        """Return at most *max_chars* of the grounding transcript plus size metadata."""
        if max_chars is not None and not isinstance(max_chars, (int, float)):
            raise ToolExecutionError(
                f"Invalid arguments for tool 'get_conversation_transcript': "
                f"max_chars must be a number, got {max_chars!r}"
            )
        limit = max(1, int(max_chars)) if max_chars and max_chars > 0 else self.default_max_chars

        try:
            transcript = await self._transcripts.fetch_transcript(self.conversation_id)
        except TranscriptStoreError as exc:
            logger.warning("Transcript fetch failed for %s: %s", self.conversation_id, exc)
            return {"success": False, "error": f"Failed to fetch transcript: {exc}"}

        full_text = transcript.text
        total = len(full_text)
        truncated = total > limit
        returned = limit if truncated else total
        percentage = round(returned / total * 100) if total else 100
        metadata = transcript.metadata

        text = full_text[:limit] + TRUNCATION_NOTICE if truncated else full_text
        return {
            "success": True,
            "conversationTitle": metadata.title,
            "transcript": text,
            "metadata": {
                "totalCharacters": total,
                "returnedCharacters": returned,
                "percentageFetched": f"{percentage}%",
                "truncated": truncated,
                "durationMinutes": metadata.duration_minutes or "unknown",
                "wordCount": metadata.word_count or "unknown",
                "speakers": metadata.speakers or "unknown",
            },
            # Kept at top level for older clients
            "totalCharacters": total,
            "returnedCharacters": returned,
            "truncated": truncated,
        }

    async def test_component(self, test_type: str) -> Dict[str, Any]:
        """Delegate to the tester and return its report verbatim."""
        try:
            kind = TestKind(test_type)
        except ValueError as exc:
            allowed = ", ".join(k.value for k in TestKind)
            raise ToolExecutionError(
                f"Unknown test type '{test_type}'. Expected one of: {allowed}"
            ) from exc
        return await self._tester.test(kind, self.draft.model_copy(), self.conversation_id)

    # ------------------------------------------------------------------ #
    # Edit tools
    # ------------------------------------------------------------------ #
    async def edit_prompt(self, new_prompt: str, reasoning: str = "") -> Dict[str, Any]:
        """Replace the prompt."""
        self.draft.prompt = new_prompt
        return {
            "success": True,
            "message": "Prompt updated in memory successfully. User can publish when ready.",
            "reasoning": reasoning,
        }

    async def edit_structured_output(self, new_schema: str, reasoning: str = "") -> Dict[str, Any]:
        """Replace the output schema if *new_schema* is valid JSON; otherwise leave it alone."""
        try:
            json.loads(new_schema)
        except (TypeError, json.JSONDecodeError) as exc:
            return {"success": False, "error": f"Invalid JSON schema: {exc}"}

        self.draft.structured_output = new_schema
        return {
            "success": True,
            "message": (
                "Structured output updated in memory successfully. User can publish when ready."
            ),
            "reasoning": reasoning,
        }

    async def edit_ui_code(self, new_code: str, reasoning: str = "") -> Dict[str, Any]:
        """Replace the UI code.  No syntax check happens here."""
        self.draft.ui_code = new_code
        return {
            "success": True,
            "message": "UI code updated in memory successfully. User can publish when ready.",
            "reasoning": reasoning,
        }
