"""
Prompt catalog and system prompt resolution.

The catalog is a JSON file of named system-instruction profiles:

    {
      "systemPrompts": {
        "standard_assistant": {"content": "You are ...", "description": "..."},
        ...
      }
    }

PromptCatalog reads and validates that file. PromptResolver turns a prompt
type into instruction text, falling back to the configured default profile
and finally to an empty instruction. A broken catalog degrades the
conversation to "no special instruction"; it never aborts it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from streamchat.llm.models import PromptCatalogError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "prompts" / "prompts.json"


class PromptProfile(BaseModel):
    """One named system-instruction profile."""

    content: str = Field(default="", description="System instruction text")
    description: str | None = Field(None, description="Human-readable summary")

    model_config = ConfigDict(extra="allow")


class _CatalogFile(BaseModel):
    system_prompts: dict[str, PromptProfile] = Field(default_factory=dict, alias="systemPrompts")


class PromptCatalog:
    """
    Named collection of system-instruction profiles.

    The backing file is read on first use and cached. lookup() returns None
    for unknown keys; only an unreadable or malformed catalog raises.

    Args:
        path: JSON catalog file (defaults to the catalog bundled with the package)
        profiles: Pre-parsed profiles; when given, no file is read
    """

    def __init__(
        self,
        path: str | Path | None = None,
        profiles: dict[str, PromptProfile] | None = None,
    ):
        self._path = Path(path) if path is not None else DEFAULT_CATALOG_PATH
        self._profiles = profiles

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptCatalog:
        """Build a catalog from an already-loaded ``{"systemPrompts": {...}}`` mapping."""
        try:
            parsed = _CatalogFile.model_validate(data)
        except ValidationError as e:
            raise PromptCatalogError(f"Invalid prompt catalog: {e}") from e
        return cls(profiles=parsed.system_prompts)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, PromptProfile]:
        if self._profiles is not None:
            return self._profiles

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            parsed = _CatalogFile.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise PromptCatalogError(f"Failed to load prompt catalog {self._path}: {e}") from e

        self._profiles = parsed.system_prompts
        logger.debug(f"Loaded {len(self._profiles)} prompt profiles from {self._path}")
        return self._profiles

    def lookup(self, prompt_type: str) -> PromptProfile | None:
        """Return the profile for prompt_type, or None if the catalog has no such key."""
        return self._load().get(prompt_type)

    def names(self) -> list[str]:
        """Prompt types known to the catalog, in file order."""
        return list(self._load())


class PromptResolver:
    """
    Resolves prompt types to system-instruction text.

    Args:
        catalog: Profile source
        default_prompt_type: Profile used when the requested one is missing or empty
    """

    def __init__(self, catalog: PromptCatalog, default_prompt_type: str):
        self._catalog = catalog
        self._default_prompt_type = default_prompt_type

    def resolve(self, prompt_type: str | None) -> str:
        """
        Return the instruction text for prompt_type.

        Order: the requested profile, then the default profile, then "".
        Catalog failures are logged and resolve to "".
        """
        try:
            requested = self._catalog.lookup(prompt_type) if prompt_type else None
            if requested is not None and requested.content:
                return requested.content

            logger.debug(
                f"Prompt type {prompt_type!r} not in catalog, "
                f"falling back to {self._default_prompt_type!r}"
            )
            fallback = self._catalog.lookup(self._default_prompt_type)
            if fallback is not None and fallback.content:
                return fallback.content
        except Exception as e:
            # Absorbs catalog read failures from any catalog implementation
            logger.warning(f"Failed to load system prompt, falling back to empty instruction: {e}")
            return ""

        return ""
