"""
Tool catalogue for the component agent.

This module declares every tool the agent can be offered and decides, from the user's edit modes,
which of them the model actually sees for a run.  Read-only tools are always offered; each edit
tool is only offered when its edit mode is enabled, so the model is never told about a tool it is
not allowed to use.
"""

import logging
from typing import (
    Callable,
    Dict,
    List,
)

from convoiq.core.schema import (
    EditModes,
    TestKind,
    ToolDefinition,
)

logger = logging.getLogger(__name__)

TOOL_REGISTRY: Dict[str, ToolDefinition] = {}
"""All known tool definitions, keyed by name, in declaration order."""

EDIT_TOOL_GATES: Dict[str, Callable[[EditModes], bool]] = {}
"""Edit tools and the edit-mode predicate that enables each of them."""


def register_tool(
    definition: ToolDefinition, gate: Callable[[EditModes], bool] | None = None
) -> ToolDefinition:
    """
    Register a tool definition.

    Parameters
    ----------
    definition:
        The tool to add to the catalogue.  Its name must be unique.
    gate:
        Predicate over :class:`EditModes`.  When given, the tool is an edit tool and is only
        offered if the predicate is true.  When *None*, the tool is read-only and always offered.

    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if definition.name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{definition.name}' is already registered.")
    logger.debug("Registering tool '%s'", definition.name)
    TOOL_REGISTRY[definition.name] = definition
    if gate is not None:
        EDIT_TOOL_GATES[definition.name] = gate
    return definition


def _object_schema(properties: Dict[str, Dict], required: List[str]) -> Dict:
    return {"type": "object", "properties": properties, "required": required}


_REASONING = {
    "type": "string",
    "description": "Brief explanation of why you made these changes",
}

# ---------------------------------------------------------------------------
# Read-only tools
# ---------------------------------------------------------------------------
READ_CURRENT_COMPONENT = register_tool(
    ToolDefinition(
        name="read_current_component",
        description=(
            "Read the current state of the component being edited. Returns the prompt, "
            "structured output schema, and UI code."
        ),
        parameters=_object_schema({}, []),
    )
)

GET_CONVERSATION_TRANSCRIPT = register_tool(
    ToolDefinition(
        name="get_conversation_transcript",
        description=(
            "Fetch the readable transcript for the selected conversation. Returns the transcript "
            "with metadata (duration, word count, speakers, character count, percentage fetched). "
            "Start with a small sample (5000 chars), then request more if the metadata shows "
            "you need it."
        ),
        parameters=_object_schema(
            {
                "max_chars": {
                    "type": "number",
                    "description": (
                        "Maximum number of characters to return. Default is 5000. Peek with fewer "
                        "characters first and request more if needed."
                    ),
                }
            },
            [],
        ),
    )
)

TEST_COMPONENT = register_tool(
    ToolDefinition(
        name="test_component",
        description=(
            "Test the current prompt + structured output on the selected conversation "
            "transcript. Returns the LLM response or any errors."
        ),
        parameters=_object_schema(
            {
                "test_type": {
                    "type": "string",
                    "enum": [kind.value for kind in TestKind],
                    "description": (
                        "Type of test: full (run LLM + validate), schema_validation (just "
                        "validate output format), ui_render (check if UI can render)"
                    ),
                }
            },
            ["test_type"],
        ),
    )
)

# ---------------------------------------------------------------------------
# Edit tools
# ---------------------------------------------------------------------------
EDIT_PROMPT = register_tool(
    ToolDefinition(
        name="edit_prompt",
        description="Edit the component prompt.",
        parameters=_object_schema(
            {
                "new_prompt": {"type": "string", "description": "The new prompt text"},
                "reasoning": _REASONING,
            },
            ["new_prompt", "reasoning"],
        ),
    ),
    gate=lambda modes: modes.edit_prompt,
)

EDIT_STRUCTURED_OUTPUT = register_tool(
    ToolDefinition(
        name="edit_structured_output",
        description="Edit the structured output JSON schema.",
        parameters=_object_schema(
            {
                "new_schema": {
                    "type": "string",
                    "description": "The new JSON schema as a string",
                },
                "reasoning": _REASONING,
            },
            ["new_schema", "reasoning"],
        ),
    ),
    gate=lambda modes: modes.edit_data,
)

EDIT_UI_CODE = register_tool(
    ToolDefinition(
        name="edit_ui_code",
        description="Edit the React UI component code.",
        parameters=_object_schema(
            {
                "new_code": {
                    "type": "string",
                    "description": "The new React component code (TypeScript/JSX)",
                },
                "reasoning": _REASONING,
            },
            ["new_code", "reasoning"],
        ),
    ),
    gate=lambda modes: modes.edit_ui_code,
)


def get_agent_tools(edit_modes: EditModes) -> List[ToolDefinition]:
    """
    Return the tools the model may invoke for a run with *edit_modes*.

    The result always starts with the read-only tools, followed by one edit tool per enabled
    mode, in catalogue order.  Pure function of the flags.
    """
    tools: List[ToolDefinition] = []
    for name, definition in TOOL_REGISTRY.items():
        gate = EDIT_TOOL_GATES.get(name)
        if gate is None or gate(edit_modes):
            tools.append(definition)
    return tools
