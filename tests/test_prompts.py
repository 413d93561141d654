"""Tests for the first user message built for the model."""

from convoiq.agent.prompts import build_agent_user_prompt
from convoiq.core.schema import (
    ComponentDraft,
    ConversationMetadata,
    EditModes,
)


def test_prompt_includes_metadata_and_modes() -> None:
    text = build_agent_user_prompt(
        user_input="Add action items",
        component_title="Summary",
        conversation_title="Weekly sync",
        current_state=ComponentDraft(prompt="Summarise"),
        edit_modes=EditModes(edit_prompt=True, edit_ui_code=True),
        metadata=ConversationMetadata(
            duration_minutes="12.5", speakers=3, word_count=1800, char_count=9000
        ),
    )

    assert "Duration: 12.5 minutes" in text
    assert "Speakers: 3" in text
    assert "Words: ~1,800" in text
    assert "Enabled Edit Modes: Prompt, UI Code" in text
    assert "Summarise" in text
    assert text.count("(empty)") == 2
    assert "Add action items" in text


def test_prompt_without_metadata_or_modes() -> None:
    text = build_agent_user_prompt(
        user_input="What does it do?",
        component_title="Summary",
        conversation_title="Weekly sync",
        current_state=ComponentDraft(),
        edit_modes=EditModes(),
    )

    assert "Duration: unknown minutes" in text
    assert "Words: unknown" in text
    assert "None - I can only read and test the current configuration" in text
