"""System instruction and first user message for the component agent."""

from convoiq.core.schema import (
    ComponentDraft,
    ConversationMetadata,
    EditModes,
)

AGENT_SYSTEM_PROMPT = """\
You are an expert AI component designer for ConvoIQ, a conversation analysis platform.

You help users create and refine LLM-powered components that analyze conversation transcripts.
Each component has three parts:

1. **Prompt**: instructions for an LLM to analyze conversation data
2. **Structured Output**: JSON schema defining the expected output format
3. **UI Code**: React/TypeScript component that renders the structured data

## Tools

You can read the current component, fetch the conversation transcript, test the component on
that transcript, and edit the parts the user has enabled. Edit tools for disabled parts are not
available to you; do not try to change those parts.

## Edit Modes

The user controls what you can edit:
- **Prompt**: the LLM instructions
- **Data**: the structured output JSON schema
- **UICode**: the React component code

## Working With Transcripts

You are given conversation metadata (duration, word count, speakers, character count) up front.
Use it to decide how much transcript to fetch: short conversations can be fetched whole, long
ones should be sampled first. The transcript tool reports the percentage fetched; request more
only when you need it.

## Guidelines

- Prompts: be clear and specific about what to extract, and reference the output schema.
- Structured output: valid JSON Schema, specific types, required fields and descriptions.
- UI code: a clean functional React component styled with Tailwind CSS that receives a `data`
  prop matching the structured output and handles empty or missing fields.

## Process

1. Acknowledge what the user wants
2. Read the current state
3. Make your edits
4. Test the result and fix any issues
5. Finish with a short summary of what changed

Edits only change the in-memory draft. The user saves it by clicking "Publish".
"""


def build_agent_user_prompt(
    user_input: str,
    component_title: str,
    conversation_title: str,
    current_state: ComponentDraft,
    edit_modes: EditModes,
    metadata: ConversationMetadata | None = None,
) -> str:
    """Build the first user message: request, draft snapshot and conversation facts."""
    metadata = metadata or ConversationMetadata()
    enabled = edit_modes.enabled_labels()
    modes_text = (
        ", ".join(enabled)
        if enabled
        else "None - I can only read and test the current configuration"
    )
    words = f"~{metadata.word_count:,}" if metadata.word_count else "unknown"
    chars = f"~{metadata.char_count:,}" if metadata.char_count else "unknown"

    return f"""\
Component: "{component_title}"
Test Conversation: "{conversation_title}"

Conversation Details:
- Duration: {metadata.duration_minutes or "unknown"} minutes
- Speakers: {metadata.speakers or "unknown"}
- Words: {words}
- Characters: {chars}

Enabled Edit Modes: {modes_text}

## Current Component State

**Prompt:**
{current_state.prompt or "(empty)"}

**Structured Output (JSON Schema):**
{current_state.structured_output or "(empty)"}

**UI Code (React/TypeScript):**
{current_state.ui_code or "(empty)"}

---

User Request:
{user_input}

Only edit the enabled parts, test your changes on "{conversation_title}", and report your
progress and final results."""
