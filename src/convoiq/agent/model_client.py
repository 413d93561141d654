"""
Model-call interface for ConvoIQ.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
component tester) stays provider-agnostic and sees a model as something that, given a message
history in OpenAI chat format and a list of tools, yields :class:`ModelChunk` objects: optional
text deltas and optional tool-call fragments tagged with a position index.

We support two back-ends out of the box:

1. **OpenAI-compatible** chat completions (OpenAI itself, or a gateway such as OpenRouter via
   ``MODEL_BASE_URL``).
2. **Anthropic** messages API.

Additional providers can be added by subclassing :class:`BaseModelClient` and registering via
:func:`register_model_client`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
)

from pydantic import (
    BaseModel,
    Field,
)

from convoiq.config import Settings
from convoiq.core.schema import ToolDefinition

logger = logging.getLogger(__name__)

ChatMessage = Mapping[str, Any]


class ModelClientError(RuntimeError):
    """Raised when a model call cannot be made or its stream breaks."""


class ToolCallDelta(BaseModel):
    """A fragment of one tool call, identified by its position index within the turn."""

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None


class ModelChunk(BaseModel):
    """One streamed piece of a model turn."""

    text: Optional[str] = None
    tool_calls: List[ToolCallDelta] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_MODEL_CLIENT_REGISTRY: dict[str, Type["BaseModelClient"]] = {}


def register_model_client(name: str) -> Callable:
    """Decorator to register a model client class under *name*."""

    def wrapper(cls: Type["BaseModelClient"]) -> Type["BaseModelClient"]:
        _MODEL_CLIENT_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model_client(settings: Settings, name: str | None = None) -> "BaseModelClient":
    """
    Factory that returns a model client configured from *settings*.

    Fallback order for the provider:
    1. *name* arg
    2. ``settings.MODEL_PROVIDER``

    Credentials are not checked here; a client without an API key raises
    :class:`ModelClientError` when it is asked to stream.
    """
    target = (name or settings.MODEL_PROVIDER).lower()
    cls = _MODEL_CLIENT_REGISTRY.get(target)
    if cls is None:
        raise ValueError(f"Model provider '{target}' is not registered.")
    return cls.from_settings(settings)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseModelClient(ABC):
    """Abstract streaming chat model with tool calling."""

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> "BaseModelClient":
        """Build a client from application settings."""

    @abstractmethod
    def stream(
        self, messages: Sequence[ChatMessage], tools: Sequence[ToolDefinition]
    ) -> AsyncIterator[ModelChunk]:
        """Issue one streaming call and yield its chunks in arrival order."""

    async def complete_text(self, messages: Sequence[ChatMessage]) -> str:
        """Run a tool-less call and return the concatenated text."""
        parts: List[str] = []
        async for chunk in self.stream(messages, []):
            if chunk.text:
                parts.append(chunk.text)
        return "".join(parts)


# ---------------------------------------------------------------------------
# Concrete clients
# ---------------------------------------------------------------------------
@register_model_client("openai")
class OpenAIModelClient(BaseModelClient):
    """OpenAI-compatible chat completions client (OpenAI, OpenRouter, ...)."""

    def __init__(
        self,
        model: str,
        api_key: str | None,
        base_url: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 10000,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None
        if api_key:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIModelClient":
        # A gateway base URL implies gateway credentials; plain OpenAI otherwise.
        api_key = settings.OPENAI_API_KEY
        if settings.MODEL_BASE_URL and "openrouter" in settings.MODEL_BASE_URL:
            api_key = settings.OPENROUTER_API_KEY or api_key
        return cls(
            model=settings.MODEL_NAME,
            api_key=api_key,
            base_url=settings.MODEL_BASE_URL,
            temperature=settings.MODEL_TEMPERATURE,
            max_tokens=settings.MODEL_MAX_TOKENS,
        )

    async def stream(
        self, messages: Sequence[ChatMessage], tools: Sequence[ToolDefinition]
    ) -> AsyncIterator[ModelChunk]:
        if self._client is None:
            raise ModelClientError(
                "Model client not initialized. Set OPENROUTER_API_KEY or OPENAI_API_KEY."
            )

        import openai  # pylint: disable=import-outside-toplevel

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": list(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = [tool.to_openai() for tool in tools]

        try:
            response = await self._client.chat.completions.create(**kwargs)
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                deltas = [
                    ToolCallDelta(
                        index=call.index,
                        id=call.id,
                        name=call.function.name if call.function else None,
                        arguments=call.function.arguments if call.function else None,
                    )
                    for call in (delta.tool_calls or [])
                ]
                if delta.content or deltas:
                    yield ModelChunk(text=delta.content or None, tool_calls=deltas)
        except openai.OpenAIError as exc:
            raise ModelClientError(f"Model call failed: {exc}") from exc


def _to_anthropic_messages(messages: Sequence[ChatMessage]) -> tuple[str, List[Dict[str, Any]]]:
    """Convert an OpenAI-format history into Anthropic ``system`` + ``messages``."""
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    for message in messages:
        role = message["role"]
        if role == "system":
            system_parts.append(message["content"])
        elif role == "user":
            converted.append({"role": "user", "content": message["content"]})
        elif role == "assistant":
            blocks: List[Dict[str, Any]] = []
            if message.get("content"):
                blocks.append({"type": "text", "text": message["content"]})
            for call in message.get("tool_calls") or []:
                try:
                    tool_input = json.loads(call["function"]["arguments"] or "{}")
                except json.JSONDecodeError:
                    tool_input = {}
                if not isinstance(tool_input, dict):
                    tool_input = {}
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call["id"],
                        "name": call["function"]["name"],
                        "input": tool_input,
                    }
                )
            converted.append({"role": "assistant", "content": blocks})
        elif role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message["tool_call_id"],
                "content": message["content"],
            }
            # All results of one turn travel in a single user message.
            previous = converted[-1] if converted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
            ):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
        else:
            raise ModelClientError(f"Unsupported message role '{role}'")

    return "\n\n".join(system_parts), converted


@register_model_client("anthropic")
class AnthropicModelClient(BaseModelClient):
    """Anthropic messages API client."""

    def __init__(
        self,
        model: str,
        api_key: str | None,
        temperature: float = 0.7,
        max_tokens: int = 10000,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None
        if api_key:
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.AsyncAnthropic(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnthropicModelClient":
        return cls(
            model=settings.MODEL_NAME,
            api_key=settings.ANTHROPIC_API_KEY,
            temperature=settings.MODEL_TEMPERATURE,
            max_tokens=settings.MODEL_MAX_TOKENS,
        )

    async def stream(
        self, messages: Sequence[ChatMessage], tools: Sequence[ToolDefinition]
    ) -> AsyncIterator[ModelChunk]:
        if self._client is None:
            raise ModelClientError("Model client not initialized. Set ANTHROPIC_API_KEY.")

        import anthropic  # pylint: disable=import-outside-toplevel

        system, converted = _to_anthropic_messages(messages)
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": converted,
            "stream": True,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [tool.to_anthropic() for tool in tools]

        try:
            response = await self._client.messages.create(**kwargs)
            async for event in response:
                if event.type == "content_block_start" and event.content_block.type == "tool_use":
                    yield ModelChunk(
                        tool_calls=[
                            ToolCallDelta(
                                index=event.index,
                                id=event.content_block.id,
                                name=event.content_block.name,
                            )
                        ]
                    )
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta":
                        yield ModelChunk(text=event.delta.text)
                    elif event.delta.type == "input_json_delta":
                        yield ModelChunk(
                            tool_calls=[
                                ToolCallDelta(index=event.index, arguments=event.delta.partial_json)
                            ]
                        )
        except anthropic.AnthropicError as exc:
            raise ModelClientError(f"Model call failed: {exc}") from exc
