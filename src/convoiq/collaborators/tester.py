"""
Grounding/test collaborator used by the ``test_component`` tool.

:class:`PlaceholderComponentTester` only acknowledges the request, which is what the web product
ships today.  :class:`LLMComponentTester` actually runs the draft: it feeds the draft prompt, the
grounding transcript and the output schema to a model and checks what comes back.
"""

import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Dict,
)

from convoiq.agent.model_client import (
    BaseModelClient,
    ModelClientError,
)
from convoiq.collaborators.transcripts import (
    TranscriptStore,
    TranscriptStoreError,
)
from convoiq.core.schema import (
    ComponentDraft,
    TestKind,
)

logger = logging.getLogger(__name__)


class ComponentTester(ABC):
    """Runs one kind of check of a component draft against a grounding conversation."""

    @abstractmethod
    async def test(
        self, kind: TestKind, draft: ComponentDraft, conversation_id: str
    ) -> Dict[str, Any]:
        """Return a JSON-serialisable report; ``success`` tells whether the check passed."""


class PlaceholderComponentTester(ComponentTester):
    """Tester that reports what it would run without running anything."""

    async def test(
        self, kind: TestKind, draft: ComponentDraft, conversation_id: str
    ) -> Dict[str, Any]:
        return {
            "success": True,
            "testType": kind.value,
            "message": (
                f'Test "{kind.value}" would run here. Full implementation requires LLM integration.'
            ),
            "note": "Placeholder tester. Set COMPONENT_TESTER=llm to run real tests.",
        }


EXTRACTION_SYSTEM_PROMPT = """\
You are a data extraction and analysis assistant. Your job is to analyze conversation transcripts
and generate structured data according to a given schema.

# Rules
- Your output must be valid JSON matching the schema
- If the transcript doesn't contain relevant information, use null or empty arrays as appropriate
- Do not add fields not in the schema
- Do not omit required fields
- Pay attention to data types (strings, numbers, arrays, objects)

# Output Format
Respond ONLY with the JSON data. No explanation, no markdown formatting, no additional text.
"""

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.+?)```", re.DOTALL)
_COMPONENT_DEFINITION = re.compile(
    r"\bfunction\s+[A-Z]\w*|\b(?:const|let)\s+[A-Z]\w*\s*=|export\s+default\b"
)


def _sanitize_json_string(content: str) -> str:
    """Strip markdown code fences and anything outside the outermost JSON object."""
    match = _CODE_FENCE.search(content)
    if match:
        content = match.group(1).strip()
    start = content.find("{")
    end = content.rfind("}")
    if start >= 0 and end > start:
        content = content[start : end + 1]
    return content


def _parse_schema(text: str) -> Dict[str, Any]:
    schema = json.loads(text)
    if not isinstance(schema, dict):
        raise ValueError(f"schema must be a JSON object, got {type(schema).__name__}")
    return schema


def _build_extraction_prompt(prompt: str, transcript: str, schema: str) -> str:
    return (
        f"# Component Instructions\n{prompt}\n\n"
        f"# Conversation Transcript\n{transcript}\n\n"
        f"# Required Output Schema\n{schema}\n\n"
        "Please analyze the transcript according to the component instructions above and generate "
        "data that exactly matches the required output schema."
    )


class LLMComponentTester(ComponentTester):
    """Tester that runs the draft prompt through a model on the grounding transcript."""

    def __init__(
        self,
        model_client: BaseModelClient,
        transcripts: TranscriptStore,
        max_transcript_chars: int | None = None,
    ) -> None:
        self._model_client = model_client
        self._transcripts = transcripts
        self._max_transcript_chars = max_transcript_chars

    async def test(
        self, kind: TestKind, draft: ComponentDraft, conversation_id: str
    ) -> Dict[str, Any]:
        if kind is TestKind.SCHEMA_VALIDATION:
            return self._check_schema(draft)
        if kind is TestKind.UI_RENDER:
            return self._check_ui_code(draft)
        return await self._run_full(draft, conversation_id)

    @staticmethod
    def _check_schema(draft: ComponentDraft) -> Dict[str, Any]:
        try:
            schema = _parse_schema(draft.structured_output)
        except ValueError as exc:  # JSONDecodeError is a ValueError
            return {"success": False, "testType": "schema_validation", "error": str(exc)}
        return {
            "success": True,
            "testType": "schema_validation",
            "message": "Structured output is a valid JSON object.",
            "requiredFields": schema.get("required", []),
        }

    @staticmethod
    def _check_ui_code(draft: ComponentDraft) -> Dict[str, Any]:
        if not draft.ui_code.strip():
            return {"success": False, "testType": "ui_render", "error": "UI code is empty"}
        if not _COMPONENT_DEFINITION.search(draft.ui_code):
            return {
                "success": False,
                "testType": "ui_render",
                "error": "UI code does not define a component",
            }
        return {
            "success": True,
            "testType": "ui_render",
            "message": "UI code defines a component. Rendering happens in the browser.",
        }

    async def _run_full(self, draft: ComponentDraft, conversation_id: str) -> Dict[str, Any]:
        try:
            schema = _parse_schema(draft.structured_output)
        except ValueError as exc:
            return {"success": False, "testType": "full", "error": f"Invalid schema: {exc}"}

        try:
            transcript = await self._transcripts.fetch_transcript(conversation_id)
        except TranscriptStoreError as exc:
            return {"success": False, "testType": "full", "error": str(exc)}

        text = transcript.text
        if self._max_transcript_chars:
            text = text[: self._max_transcript_chars]

        messages = [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": _build_extraction_prompt(draft.prompt, text, draft.structured_output),
            },
        ]
        try:
            raw = await self._model_client.complete_text(messages)
        except ModelClientError as exc:
            return {"success": False, "testType": "full", "error": str(exc)}

        logger.debug("Component test output: %s", raw)
        try:
            data = json.loads(_sanitize_json_string(raw))
        except json.JSONDecodeError as exc:
            return {
                "success": False,
                "testType": "full",
                "error": f"Model output is not valid JSON: {exc}",
                "rawOutput": raw,
            }

        missing = [
            field
            for field in schema.get("required", [])
            if not isinstance(data, dict) or field not in data
        ]
        if missing:
            return {
                "success": False,
                "testType": "full",
                "error": f"Output is missing required fields: {', '.join(missing)}",
                "output": data,
            }
        return {"success": True, "testType": "full", "output": data}
