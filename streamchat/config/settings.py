"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from streamchat.llm.models import ConversationConfig


class LLMSettings(BaseSettings):
    """LLM API configuration."""

    model: str = Field(
        default="anthropic/claude-sonnet-4-5-20250929",
        description="LiteLLM model string, e.g. 'anthropic/claude-sonnet-4-5-20250929', "
                    "'openai/gpt-4o', 'ollama/llama3'. The provider prefix tells LiteLLM "
                    "which API to route the request to.",
    )
    max_tokens: int = Field(default=2000, gt=0, description="Output token ceiling per stream")
    default_prompt_type: str = Field(
        default="standard_assistant",
        description="Prompt catalog key used when a conversation names no prompt type "
                    "or names one the catalog does not know.",
    )
    api_key: str = Field(default="", description="API key for the model's provider")

    model_config = SettingsConfigDict(env_prefix="LLM_")

    def conversation_config(self) -> ConversationConfig:
        """Freeze the model/ceiling/prompt defaults into a service configuration."""
        return ConversationConfig(
            model=self.model,
            max_tokens=self.max_tokens,
            default_prompt_type=self.default_prompt_type,
        )


class PromptSettings(BaseSettings):
    """Prompt catalog configuration."""

    catalog_path: Path | None = Field(
        default=None,
        description="Path to a prompts.json catalog. "
                    "If None, the catalog bundled with the package is used.",
    )

    model_config = SettingsConfigDict(env_prefix="PROMPTS_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    prompts: PromptSettings = Field(default_factory=PromptSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
