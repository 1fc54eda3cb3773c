"""
Message normalization.

Callers hand us conversation history in whatever shape they have it: nothing
at all, a bare string, a single message object, or a list mixing message
objects and plain values. normalize_messages() turns all of these into the
list of {role, content} turns the provider expects, and never raises.

A message object is a mapping, a pydantic model or a dataclass instance.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from streamchat.llm.models import Turn

DEFAULT_ROLE = "user"

# Fields probed, in order, for a turn's payload. The first one present with a
# non-None value wins; a turn with none of them gets empty text.
CONTENT_FIELDS = ("content", "text")

# Provider message fields carried over unchanged when present, so assistant
# tool calls and tool results survive normalization.
PASSTHROUGH_FIELDS = ("tool_calls", "tool_call_id", "name")


def message_fields(message: Any) -> Mapping[str, Any] | None:
    """Return the fields of a message object, or None if it isn't one."""
    if isinstance(message, Mapping):
        return message
    if isinstance(message, BaseModel):
        return message.model_dump(exclude_none=True)
    if dataclasses.is_dataclass(message) and not isinstance(message, type):
        return dataclasses.asdict(message)
    return None


def _decode_turn(element: Any) -> Turn:
    """Decode one element of a history list into a turn."""
    fields = message_fields(element)
    if fields is None:
        return {"role": DEFAULT_ROLE, "content": str(element)}

    content: Any = ""
    for field in CONTENT_FIELDS:
        if fields.get(field) is not None:
            content = fields[field]
            break

    turn: Turn = {"role": fields.get("role") or DEFAULT_ROLE, "content": content}
    for field in PASSTHROUGH_FIELDS:
        if fields.get(field) is not None:
            turn[field] = fields[field]  # type: ignore[literal-required]
    return turn


def normalize_messages(messages: Any) -> list[Turn]:
    """
    Coerce arbitrary conversation input into an ordered list of turns.

    Args:
        messages: None, a string, a single message object (mapping, pydantic
            model or dataclass instance), or a list/tuple of messages.
            Anything else yields an empty history.

    Returns:
        A new list; caller order is preserved and no element is dropped.
        A single message object is wrapped as-is without field coercion.
    """
    if messages is None or isinstance(messages, (bool, int, float, bytes)):
        return []
    if isinstance(messages, str):
        return [{"role": DEFAULT_ROLE, "content": messages}] if messages else []
    if isinstance(messages, (list, tuple)):
        return [_decode_turn(element) for element in messages]
    if message_fields(messages) is not None:
        return [messages]
    return []
