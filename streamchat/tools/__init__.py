"""
Tool integrations for conversations.

Adapters declare the tools offered to the model and execute the tool_use
blocks it sends back.
"""

from streamchat.tools.base import ToolAdapter, ToolResult, ToolUseCollector, assistant_turn
from streamchat.tools.local import LocalToolAdapter

__all__ = [
    "ToolAdapter",
    "ToolResult",
    "ToolUseCollector",
    "assistant_turn",
    "LocalToolAdapter",
]
