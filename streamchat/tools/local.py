"""
In-process tool adapter.

Exposes plain Python callables (sync or async) as tools:

    adapter = LocalToolAdapter()
    adapter.register(
        "get_time",
        lambda timezone: ...,
        description="Current time in a timezone",
        input_schema={"type": "object", "properties": {"timezone": {"type": "string"}}},
    )

Arguments from the model are passed to the callable as keyword arguments.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

from streamchat.tools.base import ToolAdapter

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


class LocalToolAdapter(ToolAdapter):
    """Tool adapter backed by registered Python callables."""

    def __init__(self) -> None:
        self._tools: dict[str, tuple[Callable[..., Any], dict[str, Any]]] = {}

    def register(
        self,
        name: str,
        func: Callable[..., Any],
        description: str = "",
        input_schema: dict[str, Any] | None = None,
    ) -> None:
        """
        Register a callable as a tool.

        Raises:
            ValueError: If a tool with this name is already registered
        """
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name!r}")
        declaration = {
            "name": name,
            "description": description or (inspect.getdoc(func) or ""),
            "input_schema": input_schema or dict(_EMPTY_SCHEMA),
        }
        self._tools[name] = (func, declaration)
        logger.debug(f"Registered local tool {name!r}")

    async def list_tools(self) -> list[dict[str, Any]]:
        return [declaration for _, declaration in self._tools.values()]

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        if tool_name not in self._tools:
            raise ValueError(f"Unknown tool: {tool_name!r}")

        func, _ = self._tools[tool_name]
        try:
            inspect.signature(func).bind(**arguments)
        except TypeError as e:
            raise ValueError(f"Invalid arguments for tool {tool_name!r}: {e}") from e

        result = func(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result
