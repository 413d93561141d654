"""
Schema definitions for the component draft, agent tools and the chat transcript.

These data models serve as the contract between the HTTP layer, the agent loop, the tool executor
and the client that rebuilds the conversation.  We keep them separate from runtime logic so they
can be imported anywhere without side-effects.

Field names are snake_case in Python; on the wire they use the camelCase names the web client
already speaks (``structuredOutput``, ``editUICode`` ...), hence the aliases.
"""

import time
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


class ComponentDraft(BaseModel):
    """In-memory prompt / schema / UI-code triple being edited during one agent run."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    prompt: str = ""
    structured_output: str = Field("", alias="structuredOutput", description="JSON schema as text")
    ui_code: str = Field("", alias="uiCode")

    def to_wire(self) -> Dict[str, str]:
        """Return the draft using the camelCase field names of the wire protocol."""
        return self.model_dump(by_alias=True)


class EditModes(BaseModel):
    """Per-field permissions controlling which draft fields the agent may modify."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    edit_prompt: bool = Field(False, alias="editPrompt")
    edit_data: bool = Field(False, alias="editData")
    edit_ui_code: bool = Field(False, alias="editUICode")

    def enabled_labels(self) -> List[str]:
        """Human readable names of the enabled modes, in field order."""
        labels: List[str] = []
        if self.edit_prompt:
            labels.append("Prompt")
        if self.edit_data:
            labels.append("Structured Output (Data)")
        if self.edit_ui_code:
            labels.append("UI Code")
        return labels


class ConversationMetadata(BaseModel):
    """Facts about the grounding conversation, shown to the model up front."""

    title: Optional[str] = None
    duration_minutes: Optional[str] = None  # one decimal, e.g. "12.5"
    word_count: Optional[int] = None
    char_count: Optional[int] = None
    speakers: Optional[int] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ConversationMetadata":
        """Build metadata from a raw conversation record of the storage layer."""
        seconds = record.get("video_duration_seconds")
        return cls(
            title=record.get("convo_title"),
            duration_minutes=f"{seconds / 60:.1f}" if seconds else None,
            word_count=record.get("word_count"),
            char_count=record.get("char_count"),
            speakers=record.get("num_speakers"),
        )


class TestKind(str, Enum):
    """Kinds of checks ``test_component`` can run."""

    __test__ = False  # not a pytest test class

    FULL = "full"
    SCHEMA_VALIDATION = "schema_validation"
    UI_RENDER = "ui_render"


class ToolDefinition(BaseModel):
    """A tool the model may invoke: name, description and JSON-schema parameters."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_openai(self) -> Dict[str, Any]:
        """Render the definition in the OpenAI ``tools`` format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic(self) -> Dict[str, Any]:
        """Render the definition in the Anthropic ``tools`` format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


class PendingToolCall(BaseModel):
    """Tool call being assembled from streamed fragments at one position index."""

    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""  # raw JSON text, concatenated in arrival order


class MessageKind(str, Enum):
    """Kinds of entries in a conversation round."""

    ASSISTANT_TEXT = "assistant_text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"


class AgentMessage(BaseModel):
    """One entry of a round's chat log.  Never mutated; updates produce a copy."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: MessageKind
    content: str = ""
    created_at: float = Field(default_factory=time.time)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConversationRound(BaseModel):
    """The messages produced by the agent in response to one user prompt."""

    id: str
    user_prompt: str
    edit_modes: EditModes
    messages: List[AgentMessage] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
