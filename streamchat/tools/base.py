"""
Base classes for tool adapters.

Provides the interface for tools the model may call during a conversation,
plus ToolUseCollector, an on_tool_use handler that runs each requested call
through an adapter and turns the results into the follow-up turns the
provider expects.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from streamchat.llm.models import FinalMessage, ToolUseBlock, Turn

logger = logging.getLogger(__name__)


class ToolAdapter(ABC):
    """
    Abstract base class for tool adapters.

    Tool adapters provide a uniform interface for calling tools, whether
    they're local functions, REST APIs, or other integrations.
    """

    async def initialize(self) -> None:
        """
        Initialize the tool adapter.

        This may involve starting subprocesses or establishing connections.
        The default implementation does nothing.
        """

    async def shutdown(self) -> None:
        """Release any resources held by the adapter. The default does nothing."""

    @abstractmethod
    async def call(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """
        Call a tool with the given arguments.

        Args:
            tool_name: Name of the tool to invoke
            arguments: Tool-specific arguments

        Returns:
            Tool result (strings are reported verbatim, other values as JSON)

        Raises:
            ValueError: If tool_name is unknown or arguments are invalid
            RuntimeError: If tool execution fails
        """

    @abstractmethod
    async def list_tools(self) -> list[dict[str, Any]]:
        """
        List all available tools from this adapter.

        Returns:
            Tool declarations ready to pass as ``tools=`` to
            ConversationService.stream_conversation().

        Example:
            [
                {
                    "name": "get_order_status",
                    "description": "Look up the status of an order",
                    "input_schema": {
                        "type": "object",
                        "properties": {
                            "order_id": {"type": "string"}
                        },
                        "required": ["order_id"]
                    }
                }
            ]
        """

    async def __aenter__(self):
        """Context manager entry - initialize the adapter."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - shutdown the adapter."""
        await self.shutdown()
        return False


class ToolResult(BaseModel):
    """Outcome of one executed tool-use block."""

    tool_use_id: str = Field(description="ID of the tool_use block this answers")
    name: str = Field(description="Tool that was called")
    content: str = Field(description="Result text (or error text when is_error)")
    is_error: bool = Field(default=False, description="True if the tool call failed")

    def to_message(self) -> Turn:
        """Render as the tool message that answers this call."""
        return {"role": "tool", "tool_call_id": self.tool_use_id, "content": self.content}


def assistant_turn(message: FinalMessage) -> Turn:
    """
    Render a FinalMessage as the assistant turn that precedes its tool results.

    Tool calls are sent back in function-call form with JSON-encoded
    arguments; content is None when the model produced no text.
    """
    turn: Turn = {"role": "assistant", "content": message.text or None}
    if message.tool_uses:
        turn["tool_calls"] = [
            {
                "id": block.id,
                "type": "function",
                "function": {"name": block.name, "arguments": json.dumps(block.input)},
            }
            for block in message.tool_uses
        ]
    return turn


def _result_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result)
    except (TypeError, ValueError):
        return str(result)


class ToolUseCollector:
    """
    on_tool_use handler that executes tool calls through a ToolAdapter.

    Tool failures are recorded as error results rather than raised, so the
    model can be told what went wrong on the next turn.

        collector = ToolUseCollector(adapter)
        message = await service.stream_conversation(
            history, tools=await adapter.list_tools(),
            handlers=StreamHandlers(on_tool_use=collector),
        )
        history += collector.follow_up_turns(message)
    """

    def __init__(self, adapter: ToolAdapter):
        self._adapter = adapter
        self.results: list[ToolResult] = []

    async def __call__(self, block: ToolUseBlock) -> ToolResult:
        try:
            result = await self._adapter.call(block.name, block.input)
            tool_result = ToolResult(
                tool_use_id=block.id, name=block.name, content=_result_text(result)
            )
        except Exception as e:
            logger.warning(f"Tool '{block.name}' failed: {e}")
            tool_result = ToolResult(
                tool_use_id=block.id,
                name=block.name,
                content=f"Error: Tool '{block.name}' failed: {e}",
                is_error=True,
            )

        self.results.append(tool_result)
        return tool_result

    def tool_messages(self) -> list[Turn]:
        """Collected results as tool messages, one per call, in call order."""
        return [result.to_message() for result in self.results]

    def follow_up_turns(self, message: FinalMessage) -> list[Turn]:
        """The assistant turn for message followed by its tool messages."""
        return [assistant_turn(message), *self.tool_messages()]
