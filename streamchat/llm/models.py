"""
Data models for the conversation streaming layer.

- Turn: one conversation message as sent to the provider
- TextBlock / ToolUseBlock: content blocks assembled from the stream
- TokenUsage: prompt/completion token counts for one stream
- FinalMessage: the terminal message a stream resolves to
- StreamHandlers: optional caller callbacks for stream events
- ConversationConfig: read-only service defaults
- LLMError / ConfigurationError / PromptCatalogError: error types
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Annotated, Any, Literal, NotRequired, TypedDict, Union

from pydantic import BaseModel, ConfigDict, Field


class Turn(TypedDict):
    """
    One conversation turn.

    ``content`` is either plain text or a list of provider content blocks.
    Blocks supplied by callers are passed through to the provider untouched.
    Assistant turns that requested tools carry ``tool_calls``; tool turns
    carry the ``tool_call_id`` they answer.
    """

    role: str
    content: str | list[Any] | None
    tool_calls: NotRequired[list[dict[str, Any]]]
    tool_call_id: NotRequired[str]
    name: NotRequired[str]


class TextBlock(BaseModel):
    """A run of assistant text."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(BaseModel):
    """The model's request to invoke a declared tool."""

    type: Literal["tool_use"] = "tool_use"
    id: str = Field(description="Provider-assigned tool call ID")
    name: str = Field(description="Name of the requested tool")
    input: dict[str, Any] = Field(default_factory=dict, description="Decoded tool arguments")


ContentBlock = Annotated[Union[TextBlock, ToolUseBlock], Field(discriminator="type")]


class TokenUsage(BaseModel):
    """Token counts for one LLM stream."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class FinalMessage(BaseModel):
    """
    The message a stream resolves to once the provider finishes.

    ``content`` keeps the blocks in the order the provider produced them,
    which is also the order tool-use handlers are dispatched in.
    """

    id: str = ""
    model: str = ""
    role: str = "assistant"
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


# Handlers may be plain functions or coroutine functions
EventCallback = Callable[[Any], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class StreamHandlers:
    """
    Optional callbacks for one conversation stream.

    Attributes:
        on_text: Called with each text delta as it arrives.
        on_message: Called once with the assembled FinalMessage.
        on_content_block: Called with each content block once it is complete.
        on_tool_use: Called with each tool_use block of the final message,
            sequentially and in order, after the stream has finished.

    A handler left as None is never attached and never called.
    """

    on_text: EventCallback | None = None
    on_message: EventCallback | None = None
    on_content_block: EventCallback | None = None
    on_tool_use: EventCallback | None = None


class ConversationConfig(BaseModel):
    """Static service configuration, read-only after construction."""

    model: str = Field(
        default="anthropic/claude-sonnet-4-5-20250929",
        description="LiteLLM model string for every stream the service opens",
    )
    max_tokens: int = Field(default=2000, gt=0, description="Output token ceiling")
    default_prompt_type: str = Field(
        default="standard_assistant",
        description="Catalog key used when a request names no or an unknown prompt type",
    )

    model_config = ConfigDict(frozen=True)


class LLMError(Exception):
    """
    Uniform failure raised for anything that goes wrong while streaming.

    The message is human-readable; ``cause`` keeps the original exception
    for diagnostics without making its type part of the caller contract.
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationError(ValueError):
    """Raised at construction time when the service cannot be configured."""


class PromptCatalogError(Exception):
    """Raised when the prompt catalog cannot be read or parsed."""
