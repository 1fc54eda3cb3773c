"""
Conversation service: the streaming orchestrator.

Data flow for one stream_conversation() call:

    turns (any shape) → normalize_messages() → list[Turn]
    prompt_type       → PromptResolver       → system instruction
                                ↓
                 open_stream() → StreamSession (+ caller listeners)
                                ↓
                   final_message() → FinalMessage
                                ↓
                dispatch_tool_use() → on_tool_use per tool_use block
                                ↓
                  FinalMessage returned to the caller

Design decisions:
- The service is a stateless factory product: it holds the API key and a
  frozen ConversationConfig, nothing per-conversation. Concurrent calls on
  one instance share no mutable state.
- A missing API key fails at construction, not on first use.
- Every failure on the streaming path is re-raised as LLMError with the
  original attached as ``cause``, so callers never branch on provider SDK
  exception types.
- Tool-use handler failures are contained per block and never fail the call.
"""

from __future__ import annotations

import logging
from typing import Any

from streamchat.llm.dispatch import dispatch_tool_use
from streamchat.llm.messages import normalize_messages
from streamchat.llm.models import (
    ConfigurationError,
    ConversationConfig,
    FinalMessage,
    LLMError,
    StreamHandlers,
)
from streamchat.llm.prompts import PromptCatalog, PromptResolver
from streamchat.llm.stream import StreamSession, open_stream

logger = logging.getLogger(__name__)

ERROR_DOMAIN = "LLM API"
EMPTY_FINAL_MESSAGE = "LLM stream ended without a final message"

# StreamHandlers attribute → StreamSession event name
_HANDLER_EVENTS = (
    ("on_text", "text"),
    ("on_message", "message"),
    ("on_content_block", "content_block"),
)


def normalize_error(error: BaseException) -> LLMError:
    """Wrap any failure in a fresh LLMError, keeping the original as cause."""
    detail = str(error)
    if detail:
        return LLMError(f"{ERROR_DOMAIN} error: {detail}", cause=error)
    return LLMError(f"Unknown error from {ERROR_DOMAIN}", cause=error)


def _attach_handlers(stream: StreamSession, handlers: StreamHandlers) -> None:
    for attribute, event in _HANDLER_EVENTS:
        callback = getattr(handlers, attribute)
        if callable(callback):
            stream.on(event, callback)


class ConversationService:
    """
    Streams conversations with the configured LLM.

    Args:
        api_key: Provider API key; must be a non-blank string
        config: Model, token ceiling and default prompt type
        catalog: Prompt catalog (defaults to the bundled catalog)

    Raises:
        ConfigurationError: If api_key is missing or blank
    """

    def __init__(
        self,
        api_key: str | None,
        config: ConversationConfig | None = None,
        catalog: PromptCatalog | None = None,
    ):
        if not isinstance(api_key, str) or not api_key.strip():
            msg = "LLM API key is not set. Set LLM__API_KEY in your environment or .env file."
            logger.error(msg)
            raise ConfigurationError(msg)

        self._api_key = api_key
        self._config = config or ConversationConfig()
        self._resolver = PromptResolver(
            catalog or PromptCatalog(),
            default_prompt_type=self._config.default_prompt_type,
        )

    @property
    def config(self) -> ConversationConfig:
        return self._config

    def resolve_prompt(self, prompt_type: str | None) -> str:
        """Return the system instruction for prompt_type; "" if none can be found."""
        return self._resolver.resolve(prompt_type)

    async def stream_conversation(
        self,
        turns: Any = None,
        *,
        prompt_type: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        handlers: StreamHandlers | None = None,
    ) -> FinalMessage:
        """
        Stream one conversation exchange and return the final message.

        Args:
            turns: Conversation history in any shape normalize_messages() accepts
            prompt_type: Catalog key for the system instruction (default from config)
            tools: Tool declarations offered to the model; omitted when empty
            handlers: Optional event callbacks; absent callbacks are never attached

        Returns:
            The FinalMessage the stream resolved to (never None)

        Raises:
            LLMError: If prompt resolution or the stream fails, or the stream
                ends without a final message
        """
        handlers = handlers or StreamHandlers()
        prompt_type = prompt_type or self._config.default_prompt_type

        logger.debug("Normalizing conversation turns")
        safe_turns = normalize_messages(turns)

        try:
            system_instruction = self.resolve_prompt(prompt_type)

            logger.debug(f"Streaming {len(safe_turns)} turns with prompt type {prompt_type!r}")
            stream = await open_stream(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                system=system_instruction,
                turns=safe_turns,
                tools=tools,
                api_key=self._api_key,
            )
            _attach_handlers(stream, handlers)

            final_message = await stream.final_message()
            if final_message is None:
                logger.error(EMPTY_FINAL_MESSAGE)
                raise RuntimeError(EMPTY_FINAL_MESSAGE)

            logger.debug(f"Dispatching {len(final_message.tool_uses)} tool-use block(s)")
            await dispatch_tool_use(final_message, handlers.on_tool_use)
        except Exception as e:
            logger.error(f"Error communicating with {ERROR_DOMAIN}: {str(e) or type(e).__name__}")
            raise normalize_error(e) from e

        logger.debug(
            f"Conversation done: stop_reason={final_message.stop_reason}, "
            f"tokens={final_message.usage.total_tokens}"
        )
        return final_message


def create_conversation_service(
    api_key: str | None,
    config: ConversationConfig | None = None,
    catalog: PromptCatalog | None = None,
) -> ConversationService:
    """
    Create a conversation service.

    Raises:
        ConfigurationError: If api_key is missing or blank
    """
    return ConversationService(api_key, config=config, catalog=catalog)
