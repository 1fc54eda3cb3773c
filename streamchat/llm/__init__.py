"""
Conversation Streaming Layer.

Streams a conversation with an LLM (Claude, GPT, local models via LiteLLM),
dispatching incremental events to caller handlers and resolving to a single
final message:

    turns + prompt type + tools
                ↓
    ConversationService.stream_conversation(turns, handlers=...)
                ↓
    on_text / on_content_block / on_message  (while streaming)
    on_tool_use                              (per tool_use block, in order)
                ↓
           FinalMessage

Key responsibilities:
- Normalize loosely-shaped conversation history into provider turns
- Resolve prompt types to system instructions from the prompt catalog
- Open one LiteLLM stream per call and wire caller handlers to its events
- Dispatch tool-use blocks with per-block failure isolation
- Normalize every streaming failure into LLMError
"""

from streamchat.llm.dispatch import dispatch_tool_use
from streamchat.llm.messages import normalize_messages
from streamchat.llm.models import (
    ConfigurationError,
    ConversationConfig,
    FinalMessage,
    LLMError,
    PromptCatalogError,
    StreamHandlers,
    TextBlock,
    TokenUsage,
    ToolUseBlock,
    Turn,
)
from streamchat.llm.prompts import PromptCatalog, PromptProfile, PromptResolver
from streamchat.llm.service import ConversationService, create_conversation_service
from streamchat.llm.stream import StreamSession, open_stream

__all__ = [
    "ConversationService",
    "create_conversation_service",
    "normalize_messages",
    "dispatch_tool_use",
    "open_stream",
    "StreamSession",
    "PromptCatalog",
    "PromptProfile",
    "PromptResolver",
    "ConversationConfig",
    "FinalMessage",
    "StreamHandlers",
    "TextBlock",
    "ToolUseBlock",
    "TokenUsage",
    "Turn",
    "LLMError",
    "ConfigurationError",
    "PromptCatalogError",
]
