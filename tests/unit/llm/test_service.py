"""
Unit tests for ConversationService.

Tests cover:
- Construction and API key validation
- Request wiring (model, ceiling, system prompt, turns, tools)
- Handler attachment
- Tool-use dispatch through the service
- Error normalization
- Isolation between concurrent conversations
"""

import asyncio
from dataclasses import dataclass
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest
from pydantic import BaseModel

from streamchat.llm.models import (
    ConfigurationError,
    ConversationConfig,
    FinalMessage,
    LLMError,
    StreamHandlers,
    TextBlock,
    ToolUseBlock,
)
from streamchat.llm.prompts import PromptCatalog
from streamchat.llm.service import (
    ConversationService,
    create_conversation_service,
    normalize_error,
)

MODEL = "anthropic/claude-sonnet-4-5-20250929"


# ---------------------------------------------------------------------------
# Helpers for building fake LiteLLM stream chunks
# ---------------------------------------------------------------------------

def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    choice = SimpleNamespace(delta=delta, finish_reason=finish_reason)
    return SimpleNamespace(id="chatcmpl-1", model=MODEL, choices=[choice], usage=usage)


def _tool_delta(index, tool_id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index, id=tool_id, function=SimpleNamespace(name=name, arguments=arguments)
    )


async def _aiter(items):
    for item in items:
        yield item


def _text_stream(*parts):
    return _aiter([*(_chunk(content=p) for p in parts), _chunk(finish_reason="stop")])


def _patch_acompletion(**kwargs):
    return patch("streamchat.llm.stream.acompletion", new_callable=AsyncMock, **kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config():
    return ConversationConfig(model=MODEL, max_tokens=1024, default_prompt_type="standard_assistant")


@pytest.fixture
def catalog():
    return PromptCatalog.from_dict({
        "systemPrompts": {
            "standard_assistant": {"content": "You are a helpful store assistant."},
            "enthusiastic_assistant": {"content": "You are an upbeat store assistant!"},
        }
    })


@pytest.fixture
def service(config, catalog):
    return ConversationService("test-api-key", config=config, catalog=catalog)


# ---------------------------------------------------------------------------
# Test Classes
# ---------------------------------------------------------------------------

class TestConstruction:
    """Tests for service construction and API key validation."""

    def test_factory_returns_service(self, config, catalog):
        service = create_conversation_service("test-api-key", config=config, catalog=catalog)
        assert isinstance(service, ConversationService)
        assert service.config is config

    @pytest.mark.parametrize("api_key", [None, "", "   ", "\n\t"])
    def test_blank_api_key_raises_configuration_error(self, api_key):
        with pytest.raises(ConfigurationError, match="API key"):
            create_conversation_service(api_key)

    def test_non_string_api_key_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            create_conversation_service(12345)

    def test_configuration_error_before_any_network_call(self):
        with _patch_acompletion() as mock_call:
            with pytest.raises(ConfigurationError):
                create_conversation_service("")
        mock_call.assert_not_called()

    def test_default_config(self, catalog):
        service = ConversationService("key", catalog=catalog)
        assert service.config == ConversationConfig()

    def test_config_is_read_only(self, service):
        with pytest.raises(Exception):
            service.config.model = "openai/gpt-4o"


class TestResolvePrompt:
    """Tests for ConversationService.resolve_prompt."""

    def test_known_type(self, service):
        assert service.resolve_prompt("enthusiastic_assistant") == "You are an upbeat store assistant!"

    def test_unknown_type_uses_default(self, service):
        assert service.resolve_prompt("missing_type") == "You are a helpful store assistant."


class TestRequestWiring:
    """Tests for what the service sends to LiteLLM."""

    @pytest.mark.asyncio
    async def test_passes_model_and_token_ceiling(self, service):
        with _patch_acompletion(return_value=_text_stream("ok")) as mock_call:
            await service.stream_conversation("hi")

        kwargs = mock_call.call_args.kwargs
        assert kwargs["model"] == MODEL
        assert kwargs["max_tokens"] == 1024
        assert kwargs["api_key"] == "test-api-key"

    @pytest.mark.asyncio
    async def test_uses_requested_prompt_type(self, service):
        with _patch_acompletion(return_value=_text_stream("ok")) as mock_call:
            await service.stream_conversation("hi", prompt_type="enthusiastic_assistant")

        system_msg = mock_call.call_args.kwargs["messages"][0]
        assert system_msg == {"role": "system", "content": "You are an upbeat store assistant!"}

    @pytest.mark.asyncio
    async def test_defaults_to_configured_prompt_type(self, service):
        with _patch_acompletion(return_value=_text_stream("ok")) as mock_call:
            await service.stream_conversation("hi")

        system_msg = mock_call.call_args.kwargs["messages"][0]
        assert system_msg["content"] == "You are a helpful store assistant."

    @pytest.mark.asyncio
    async def test_turns_normalized(self, service):
        history = ["hello", {"role": "assistant", "text": "Hi! How can I help?"}, {"content": "Shipping?"}]
        with _patch_acompletion(return_value=_text_stream("ok")) as mock_call:
            await service.stream_conversation(history)

        assert mock_call.call_args.kwargs["messages"][1:] == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "Hi! How can I help?"},
            {"role": "user", "content": "Shipping?"},
        ]

    @pytest.mark.asyncio
    async def test_single_message_objects_sent_as_dicts(self, service):
        @dataclass
        class Question:
            role: str
            content: str

        class Reply(BaseModel):
            role: str = "assistant"
            content: str
            name: str | None = None

        with _patch_acompletion(side_effect=[_text_stream("ok"), _text_stream("ok")]) as mock_call:
            await service.stream_conversation(Question(role="user", content="Open on Sunday?"))
            await service.stream_conversation(Reply(content="We are."))

        assert mock_call.call_args_list[0].kwargs["messages"][1:] == [
            {"role": "user", "content": "Open on Sunday?"}
        ]
        assert mock_call.call_args_list[1].kwargs["messages"][1:] == [
            {"role": "assistant", "content": "We are."}
        ]

    @pytest.mark.asyncio
    async def test_no_turns_sends_only_system(self, service):
        with _patch_acompletion(return_value=_text_stream("ok")) as mock_call:
            await service.stream_conversation()

        messages = mock_call.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system"]

    @pytest.mark.asyncio
    async def test_empty_tools_omitted(self, service):
        with _patch_acompletion(return_value=_text_stream("ok")) as mock_call:
            await service.stream_conversation("hi", tools=[])

        assert "tools" not in mock_call.call_args.kwargs

    @pytest.mark.asyncio
    async def test_tools_forwarded(self, service):
        tools = [{"name": "get_order", "description": "Order lookup", "input_schema": {"type": "object"}}]
        with _patch_acompletion(return_value=_text_stream("ok")) as mock_call:
            await service.stream_conversation("hi", tools=tools)

        assert mock_call.call_args.kwargs["tools"][0]["function"]["name"] == "get_order"

    @pytest.mark.asyncio
    async def test_returns_final_message(self, service):
        with _patch_acompletion(return_value=_text_stream("Yes, ", "we ship to Canada.")):
            message = await service.stream_conversation("Do you ship to Canada?")

        assert isinstance(message, FinalMessage)
        assert message.text == "Yes, we ship to Canada."


class TestHandlerAttachment:
    """Only handlers that are present get attached."""

    @pytest.mark.asyncio
    async def test_only_present_handlers_attached(self, service):
        session = MagicMock()
        session.final_message = AsyncMock(return_value=FinalMessage(content=[TextBlock(text="x")]))

        def on_text(delta):
            pass

        with patch(
            "streamchat.llm.service.open_stream", new_callable=AsyncMock, return_value=session
        ):
            await service.stream_conversation("hi", handlers=StreamHandlers(on_text=on_text))

        assert session.on.call_args_list == [call("text", on_text)]

    @pytest.mark.asyncio
    async def test_all_stream_handlers_attached_before_consumption(self, service):
        order = []
        session = MagicMock()
        session.on.side_effect = lambda event, cb: order.append(f"on:{event}")

        async def final_message():
            order.append("final_message")
            return FinalMessage(content=[])

        session.final_message = final_message
        handlers = StreamHandlers(
            on_text=lambda d: None,
            on_message=lambda m: None,
            on_content_block=lambda b: None,
        )

        with patch(
            "streamchat.llm.service.open_stream", new_callable=AsyncMock, return_value=session
        ):
            await service.stream_conversation("hi", handlers=handlers)

        assert order == ["on:text", "on:message", "on:content_block", "final_message"]

    @pytest.mark.asyncio
    async def test_handlers_receive_events(self, service):
        texts, blocks, messages = [], [], []
        handlers = StreamHandlers(
            on_text=texts.append,
            on_content_block=blocks.append,
            on_message=messages.append,
        )

        with _patch_acompletion(return_value=_text_stream("Hel", "lo")):
            result = await service.stream_conversation("hi", handlers=handlers)

        assert texts == ["Hel", "lo"]
        assert blocks == [TextBlock(text="Hello")]
        assert messages == [result]

    @pytest.mark.asyncio
    async def test_non_callable_handlers_ignored(self, service):
        handlers = StreamHandlers(
            on_text="print",
            on_message=42,
            on_content_block={"not": "a function"},
            on_tool_use="dispatch",
        )

        with _patch_acompletion(return_value=_text_stream("still fine")):
            result = await service.stream_conversation("hi", handlers=handlers)

        assert result.text == "still fine"

    @pytest.mark.asyncio
    async def test_non_callable_handler_not_attached(self, service):
        session = MagicMock()
        session.final_message = AsyncMock(return_value=FinalMessage(content=[TextBlock(text="x")]))

        with patch(
            "streamchat.llm.service.open_stream", new_callable=AsyncMock, return_value=session
        ):
            await service.stream_conversation("hi", handlers=StreamHandlers(on_text="nope"))

        session.on.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_handlers_is_fine(self, service):
        with _patch_acompletion(return_value=_text_stream("ok")):
            message = await service.stream_conversation("hi", handlers=None)
        assert message.text == "ok"


class TestToolUseThroughService:
    """Tool-use blocks reach on_tool_use after the stream finishes."""

    @staticmethod
    def _tool_stream():
        return _aiter([
            _chunk(content="Let me check both."),
            _chunk(tool_calls=[_tool_delta(0, "toolu_1", "get_order", '{"id": "A1"}')]),
            _chunk(tool_calls=[_tool_delta(1, "toolu_2", "get_order", '{"id": "B2"}')]),
            _chunk(finish_reason="tool_calls"),
        ])

    @pytest.mark.asyncio
    async def test_tool_use_dispatched_in_order(self, service):
        seen = []

        async def on_tool_use(block):
            seen.append(block.input["id"])

        with _patch_acompletion(return_value=self._tool_stream()):
            message = await service.stream_conversation(
                "Where are my orders?", handlers=StreamHandlers(on_tool_use=on_tool_use)
            )

        assert seen == ["A1", "B2"]
        assert message.stop_reason == "tool_use"

    @pytest.mark.asyncio
    async def test_failing_tool_handler_does_not_fail_conversation(self, service):
        seen = []

        def on_tool_use(block):
            seen.append(block.id)
            if block.id == "toolu_1":
                raise RuntimeError("order service down")

        with _patch_acompletion(return_value=self._tool_stream()):
            message = await service.stream_conversation(
                "Where are my orders?", handlers=StreamHandlers(on_tool_use=on_tool_use)
            )

        assert seen == ["toolu_1", "toolu_2"]
        assert isinstance(message, FinalMessage)
        assert [b.id for b in message.tool_uses] == ["toolu_1", "toolu_2"]

    @pytest.mark.asyncio
    async def test_tool_use_handler_sees_final_blocks(self, service):
        seen = []
        with _patch_acompletion(return_value=self._tool_stream()):
            await service.stream_conversation(
                "orders", handlers=StreamHandlers(on_tool_use=seen.append)
            )

        assert all(isinstance(block, ToolUseBlock) for block in seen)


class TestErrorNormalization:
    """Every streaming failure surfaces as LLMError."""

    @pytest.mark.asyncio
    async def test_provider_error_normalized(self, service):
        original = ConnectionError("rate limit exceeded")
        with _patch_acompletion(side_effect=original):
            with pytest.raises(LLMError) as exc_info:
                await service.stream_conversation("hi")

        err = exc_info.value
        assert str(err) == "LLM API error: rate limit exceeded"
        assert err.cause is original
        assert err.__cause__ is original

    @pytest.mark.asyncio
    async def test_error_without_message_gets_generic_text(self, service):
        with _patch_acompletion(side_effect=RuntimeError()):
            with pytest.raises(LLMError, match="^Unknown error from LLM API$"):
                await service.stream_conversation("hi")

    @pytest.mark.asyncio
    async def test_mid_stream_error_normalized(self, service):
        async def failing():
            yield _chunk(content="partial")
            raise TimeoutError("read timed out")

        with _patch_acompletion(return_value=failing()):
            with pytest.raises(LLMError, match="read timed out"):
                await service.stream_conversation("hi")

    @pytest.mark.asyncio
    async def test_empty_final_message_rejected(self, service):
        with _patch_acompletion(return_value=_aiter([])):
            with pytest.raises(LLMError, match="without a final message") as exc_info:
                await service.stream_conversation("hi")

        assert exc_info.value.cause is not None

    @pytest.mark.asyncio
    async def test_null_final_message_never_returned(self, service):
        session = MagicMock()
        session.final_message = AsyncMock(return_value=None)

        with patch(
            "streamchat.llm.service.open_stream", new_callable=AsyncMock, return_value=session
        ):
            with pytest.raises(LLMError, match="final message"):
                await service.stream_conversation("hi")

    @pytest.mark.asyncio
    async def test_stream_listener_error_normalized(self, service):
        def on_text(delta):
            raise ValueError("renderer crashed")

        with _patch_acompletion(return_value=_text_stream("x")):
            with pytest.raises(LLMError, match="renderer crashed"):
                await service.stream_conversation("hi", handlers=StreamHandlers(on_text=on_text))

    @pytest.mark.asyncio
    async def test_prompt_resolution_failure_normalized(self, service):
        with patch.object(service, "resolve_prompt", side_effect=KeyError("boom")):
            with pytest.raises(LLMError) as exc_info:
                await service.stream_conversation("hi")

        assert isinstance(exc_info.value.cause, KeyError)

    @pytest.mark.asyncio
    async def test_broken_catalog_degrades_to_no_instruction(self, config, tmp_path):
        service = ConversationService(
            "key", config=config, catalog=PromptCatalog(tmp_path / "missing.json")
        )
        with _patch_acompletion(return_value=_text_stream("ok")) as mock_call:
            message = await service.stream_conversation("hi")

        assert message.text == "ok"
        assert mock_call.call_args.kwargs["messages"] == [{"role": "user", "content": "hi"}]

    def test_normalize_error_builds_fresh_error(self):
        original = ValueError("bad request")
        err = normalize_error(original)
        assert isinstance(err, LLMError)
        assert err is not original
        assert err.message == "LLM API error: bad request"
        assert err.cause is original


class TestConcurrentConversations:
    """Concurrent calls on one service don't share turns or handlers."""

    @pytest.mark.asyncio
    async def test_no_cross_invocation_leakage(self, service):
        async def fake_acompletion(**kwargs):
            user_text = kwargs["messages"][-1]["content"]

            async def chunks():
                for i in range(3):
                    await asyncio.sleep(0)
                    yield _chunk(content=f"{user_text}-{i};")
                yield _chunk(finish_reason="stop")

            return chunks()

        received_a, received_b = [], []

        with patch("streamchat.llm.stream.acompletion", side_effect=fake_acompletion):
            message_a, message_b = await asyncio.gather(
                service.stream_conversation("alpha", handlers=StreamHandlers(on_text=received_a.append)),
                service.stream_conversation("beta", handlers=StreamHandlers(on_text=received_b.append)),
            )

        assert received_a == ["alpha-0;", "alpha-1;", "alpha-2;"]
        assert received_b == ["beta-0;", "beta-1;", "beta-2;"]
        assert message_a.text == "alpha-0;alpha-1;alpha-2;"
        assert message_b.text == "beta-0;beta-1;beta-2;"
