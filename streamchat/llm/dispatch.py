"""
Tool-use dispatch for finished messages.

Once a stream has resolved, every tool_use block of the final message is
handed to the caller's on_tool_use handler, one at a time and in message
order: tool results are reported back to the provider in the order the
calls were made. Each invocation is guarded on its own, so a failing
handler is logged and the next block is still dispatched.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import Any

from streamchat.llm.models import EventCallback

logger = logging.getLogger(__name__)


def block_type(block: Any) -> str | None:
    """Return a content block's type tag for model or mapping blocks."""
    if isinstance(block, Mapping):
        return block.get("type")
    return getattr(block, "type", None)


async def _guarded_call(handler: EventCallback, block: Any) -> bool:
    """Invoke handler for one block; return False instead of raising on failure."""
    try:
        result = handler(block)
        if inspect.isawaitable(result):
            await result
    except Exception:
        block_id = block.get("id") if isinstance(block, Mapping) else getattr(block, "id", None)
        logger.exception(f"Error in on_tool_use handler for block {block_id!r}")
        return False
    return True


async def dispatch_tool_use(final_message: Any, on_tool_use: EventCallback | None) -> None:
    """
    Run on_tool_use for each tool_use block of final_message.

    No-op when the handler is missing or not callable, or when the message
    has no block list. Never raises for handler failures.
    """
    if not callable(on_tool_use):
        return

    content = getattr(final_message, "content", None)
    if content is None and isinstance(final_message, Mapping):
        content = final_message.get("content")
    if not isinstance(content, (list, tuple)):
        return

    failures = 0
    for block in content:
        if block_type(block) != "tool_use":
            continue
        if not await _guarded_call(on_tool_use, block):
            failures += 1

    if failures:
        logger.warning(f"{failures} tool-use handler invocation(s) failed; dispatch completed")
