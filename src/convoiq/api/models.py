"""
Pydantic models for ConvoIQ API requests and responses.
This module defines the request and response schemas used by the ConvoIQ API.
"""

from typing import List

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from convoiq.core.schema import (
    ComponentDraft,
    EditModes,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class RunAgentRequest(BaseModel):
    """Everything one agent run needs.  Field names follow the web client's camelCase."""

    model_config = ConfigDict(populate_by_name=True)

    component_id: str = Field(..., alias="componentId")
    component_title: str = Field("", alias="componentTitle")
    conversation_id: str = Field(..., alias="conversationId", description="Grounding conversation")
    conversation_title: str = Field("", alias="conversationTitle")
    user_prompt: str = Field(..., alias="userPrompt", min_length=1)
    current_state: ComponentDraft = Field(default_factory=ComponentDraft, alias="currentState")
    edit_modes: EditModes = Field(default_factory=EditModes, alias="editModes")


class ToolsResponse(BaseModel):
    """Names of the tools a run with the given edit modes would offer."""

    tools: List[str]
