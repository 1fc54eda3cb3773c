"""
streamchat CLI entry point.

Provides command-line access to the conversation service and its configuration.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from streamchat import __version__
from streamchat.config.logging import get_logger, setup_logging
from streamchat.config.settings import Settings, load_settings
from streamchat.llm import (
    ConfigurationError,
    LLMError,
    PromptCatalog,
    PromptCatalogError,
    StreamHandlers,
    create_conversation_service,
)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="streamchat",
        description="Stream conversations with an LLM provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"streamchat {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    subparsers.add_parser(
        "prompts",
        help="List prompt types in the prompt catalog",
    )

    chat_parser = subparsers.add_parser(
        "chat",
        help="Send a message and stream the reply to stdout",
    )
    chat_parser.add_argument(
        "message",
        help='Message to send, e.g. "Do you ship to Canada?"',
    )
    chat_parser.add_argument(
        "--prompt-type",
        default=None,
        help="Prompt catalog key for the system instruction (default: LLM__DEFAULT_PROMPT_TYPE)",
    )
    chat_parser.add_argument(
        "--history",
        type=Path,
        default=None,
        help="JSON file with prior conversation turns to send before the message",
    )

    return parser


def _build_catalog(settings: Settings) -> PromptCatalog:
    return PromptCatalog(settings.prompts.catalog_path)


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    catalog = _build_catalog(settings)

    logger.info("\n=== streamchat Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nLLM Model: {settings.llm.model}")
    logger.info(f"LLM Max Tokens: {settings.llm.max_tokens}")
    logger.info(f"LLM Default Prompt Type: {settings.llm.default_prompt_type}")
    logger.info(f"LLM API Key: {'Set' if settings.llm.api_key else 'Not set'}")
    logger.info(f"\nPrompt Catalog: {catalog.path}")

    return 0


def cmd_prompts(settings: Settings) -> int:
    """List the prompt types the catalog defines."""
    logger = get_logger(__name__)

    catalog = _build_catalog(settings)
    try:
        names = catalog.names()
    except PromptCatalogError as e:
        logger.error(str(e))
        return 1

    if not names:
        print(f"No prompt types defined in {catalog.path}")
        return 0

    for name in names:
        profile = catalog.lookup(name)
        marker = " (default)" if name == settings.llm.default_prompt_type else ""
        description = f"  - {profile.description}" if profile and profile.description else ""
        print(f"{name}{marker}{description}")

    return 0


def _load_history(path: Path) -> list:
    """Read prior turns from a JSON file; a single turn object is accepted too."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        return data
    return [data]


async def cmd_chat(args, settings: Settings) -> int:
    """
    Send one message and stream the reply.

    Text deltas are written to stdout as they arrive; the stop reason and
    token usage follow once the stream has finished. Tool-use requests are
    listed but not executed (no tools are declared from the CLI).
    """
    logger = get_logger(__name__)

    history: list = []
    if args.history is not None:
        try:
            history = _load_history(args.history)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read history file {args.history}: {e}")
            return 1

    try:
        service = create_conversation_service(
            settings.llm.api_key,
            config=settings.llm.conversation_config(),
            catalog=_build_catalog(settings),
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    def on_text(delta: str) -> None:
        sys.stdout.write(delta)
        sys.stdout.flush()

    def on_tool_use(block) -> None:
        print(f"\n[tool requested] {block.name}({json.dumps(block.input)})")

    turns = [*history, {"role": "user", "content": args.message}]
    logger.info(f"Sending to {settings.llm.model}...")

    try:
        message = await service.stream_conversation(
            turns,
            prompt_type=args.prompt_type,
            handlers=StreamHandlers(on_text=on_text, on_tool_use=on_tool_use),
        )
    except LLMError as e:
        print(f"\nLLM error: {e}", file=sys.stderr)
        return 1

    print()
    print(f"\n--- stop: {message.stop_reason} | "
          f"tokens: {message.usage.total_tokens} "
          f"(prompt {message.usage.prompt_tokens} "
          f"+ completion {message.usage.completion_tokens}) ---")
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(settings)

    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "prompts":
        return cmd_prompts(settings)
    elif args.command == "chat":
        return asyncio.run(cmd_chat(args, settings))
    else:
        # Default: show help
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
