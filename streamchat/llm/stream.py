"""
Streaming session over LiteLLM.

open_stream() issues one streaming completion and wraps the chunk iterator in
a StreamSession. Callers register listeners with on() and then await
final_message(), which consumes the stream exactly once:

    acompletion(stream=True) → chunk, chunk, ... → FinalMessage
                                  │
                                  ├─ "text"           each text delta
                                  ├─ "content_block"  each finished block
                                  └─ "message"        the assembled message

LiteLLM streams in the OpenAI chunk format regardless of provider: text
arrives as delta.content, tool calls arrive as fragments keyed by index
whose JSON arguments must be concatenated before decoding. The session
reassembles both into ordered content blocks.

No retries, timeouts or cancellation happen here; a provider failure
propagates out of open_stream() or final_message() unchanged.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from litellm import acompletion

from streamchat.llm.messages import message_fields
from streamchat.llm.models import (
    FinalMessage,
    TextBlock,
    TokenUsage,
    ToolUseBlock,
    Turn,
)

logger = logging.getLogger(__name__)

STREAM_EVENTS = ("text", "content_block", "message")

# OpenAI-style finish reasons → stop reasons reported on FinalMessage
_STOP_REASONS = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
}


def format_tool_declarations(tools: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    """
    Convert tool declarations to LiteLLM's function-calling format.

    Declarations may use the flat shape {name, description, input_schema}
    or already be wrapped as {"type": "function", "function": {...}}.
    Returns None for a missing or empty list so the caller can omit the
    field entirely.
    """
    if not tools:
        return None

    formatted = []
    for tool in tools:
        if tool.get("type") == "function" and "function" in tool:
            formatted.append(tool)
            continue
        formatted.append({
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("input_schema") or {"type": "object", "properties": {}},
            },
        })
    return formatted


class _ToolCallFragments:
    """Accumulates the streamed fragments of one tool call."""

    def __init__(self) -> None:
        self.id = ""
        self.name = ""
        self.arguments = ""

    def add(self, delta: Any) -> None:
        if getattr(delta, "id", None):
            self.id = delta.id
        function = getattr(delta, "function", None)
        if function is not None:
            if getattr(function, "name", None):
                self.name = function.name
            if getattr(function, "arguments", None):
                self.arguments += function.arguments

    def to_block(self) -> ToolUseBlock:
        try:
            arguments = json.loads(self.arguments) if self.arguments else {}
        except json.JSONDecodeError:
            logger.warning(f"Tool call {self.name!r} streamed malformed arguments: {self.arguments!r}")
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {"value": arguments}
        return ToolUseBlock(id=self.id, name=self.name, input=arguments)


class StreamSession:
    """
    One live streaming exchange with the provider.

    A session is single-use and owned by the invocation that opened it.

    Args:
        chunks: Async iterator of LiteLLM stream chunks
        model: Model string the stream was opened with (used when chunks
            don't report one)
    """

    def __init__(self, chunks: AsyncIterator[Any], model: str):
        self._chunks = chunks
        self._model = model
        self._listeners: dict[str, list[Callable[[Any], Any]]] = {
            event: [] for event in STREAM_EVENTS
        }
        self._consumed = False

    def on(self, event: str, callback: Callable[[Any], Any]) -> StreamSession:
        """
        Register a listener for a stream event.

        Several listeners may be registered for the same event; they are
        called in registration order.

        Raises:
            ValueError: If event is not one of STREAM_EVENTS
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown stream event {event!r}. Expected one of {STREAM_EVENTS}")
        self._listeners[event].append(callback)
        return self

    async def _emit(self, event: str, payload: Any) -> None:
        for callback in self._listeners[event]:
            result = callback(payload)
            if inspect.isawaitable(result):
                await result

    async def final_message(self) -> FinalMessage | None:
        """
        Consume the stream, emitting events, and return the assembled message.

        Returns:
            The FinalMessage, or None if the provider produced no chunks.

        Raises:
            RuntimeError: If the session was already consumed
            Exception: Whatever the provider iterator or a listener raises
        """
        if self._consumed:
            raise RuntimeError("Stream session has already been consumed")
        self._consumed = True

        content: list[TextBlock | ToolUseBlock] = []
        text_parts: list[str] = []
        tool_calls: dict[int, _ToolCallFragments] = {}
        message_id = ""
        model = ""
        finish_reason: str | None = None
        usage = TokenUsage()
        received = False

        async def close_text() -> None:
            if text_parts:
                block = TextBlock(text="".join(text_parts))
                text_parts.clear()
                content.append(block)
                await self._emit("content_block", block)

        async for chunk in self._chunks:
            received = True
            message_id = getattr(chunk, "id", None) or message_id
            model = getattr(chunk, "model", None) or model

            chunk_usage = getattr(chunk, "usage", None)
            if chunk_usage is not None:
                usage = TokenUsage(
                    prompt_tokens=getattr(chunk_usage, "prompt_tokens", 0) or 0,
                    completion_tokens=getattr(chunk_usage, "completion_tokens", 0) or 0,
                )

            choices = getattr(chunk, "choices", None)
            if not choices:
                continue

            choice = choices[0]
            delta = getattr(choice, "delta", None)
            if getattr(choice, "finish_reason", None):
                finish_reason = choice.finish_reason
            if delta is None:
                continue

            text = getattr(delta, "content", None)
            if text:
                text_parts.append(text)
                await self._emit("text", text)

            # Parallel calls may interleave, so fragments stay open until the stream ends
            for tool_delta in getattr(delta, "tool_calls", None) or []:
                await close_text()
                index = getattr(tool_delta, "index", None) or 0
                tool_calls.setdefault(index, _ToolCallFragments()).add(tool_delta)

        if not received:
            return None

        await close_text()
        for index in sorted(tool_calls):
            block = tool_calls[index].to_block()
            content.append(block)
            await self._emit("content_block", block)

        message = FinalMessage(
            id=message_id,
            model=model or self._model,
            content=content,
            stop_reason=_STOP_REASONS.get(finish_reason, finish_reason),
            usage=usage,
        )
        await self._emit("message", message)
        return message


async def open_stream(
    *,
    model: str,
    max_tokens: int,
    system: str,
    turns: list[Turn],
    tools: list[dict[str, Any]] | None = None,
    api_key: str | None = None,
) -> StreamSession:
    """
    Open one streaming completion and return its session.

    Args:
        model: LiteLLM model string
        max_tokens: Output token ceiling
        system: System instruction; an empty string sends no system message
        turns: Normalized conversation turns
        tools: Tool declarations; omitted from the request when empty
        api_key: Provider API key

    Raises:
        Exception: Any provider error from LiteLLM, unchanged
    """
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.extend(dict(message_fields(turn)) for turn in turns)

    call_kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if api_key:
        call_kwargs["api_key"] = api_key

    provider_tools = format_tool_declarations(tools)
    if provider_tools:
        call_kwargs["tools"] = provider_tools

    logger.debug(f"Opening stream: model={model}, turns={len(turns)}, tools={len(provider_tools or [])}")
    chunks = await acompletion(**call_kwargs)
    return StreamSession(chunks, model=model)
