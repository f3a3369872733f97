"""Unit tests for LLM providers."""

import asyncio
import json

import httpx
import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from kbqa.config import ProviderConfig
from kbqa.errors import ProviderError, RateLimitError
from kbqa.llm.base import ChatMessage, StreamDelta, StreamFinish, parse_sse_data, provider_error
from kbqa.llm.chat_model import ChatModelProvider
from kbqa.llm.factory import create_provider
from kbqa.llm.gemini import GeminiProvider
from kbqa.llm.openai import OpenAIProvider

MESSAGES = [ChatMessage(role="user", content="What is deep learning?")]


def sse(*payloads):
    return "".join(f"data: {json.dumps(p) if isinstance(p, dict) else p}\n\n" for p in payloads)


def drain(provider, system_prompt="Be brief.", messages=MESSAGES):
    async def collect():
        return [e async for e in provider.stream_generate(system_prompt, messages)]

    return asyncio.run(collect())


class TestHelpers:
    """Test suite for shared provider helpers."""

    def test_parse_sse_data(self):
        """Test only data lines carry payloads."""
        assert parse_sse_data('data: {"a": 1}') == '{"a": 1}'
        assert parse_sse_data("event: ping") is None
        assert parse_sse_data("") is None

    def test_provider_error_mapping(self):
        """Test 429 maps to RateLimitError and other statuses to ProviderError."""
        assert isinstance(provider_error("Gemini", 429, "slow down"), RateLimitError)
        error = provider_error("Gemini", 500, "oops")
        assert type(error) is ProviderError
        assert error.status_code == 500


class TestGeminiProvider:
    """Test suite for GeminiProvider."""

    def test_streams_deltas_then_finish(self):
        """Test SSE chunks become deltas followed by one finish event."""
        seen = {}

        def handler(request):
            seen["request"] = request
            body = sse(
                {"candidates": [{"content": {"parts": [{"text": "Deep "}]}}]},
                {"candidates": [{"content": {"parts": [{"text": "learning."}]},
                                 "finishReason": "STOP"}]},
            )
            return httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})

        provider = GeminiProvider(api_key="test-key", transport=httpx.MockTransport(handler))
        events = drain(provider)

        assert events[:2] == [StreamDelta(text="Deep "), StreamDelta(text="learning.")]
        assert events[-1] == StreamFinish(
            full_text="Deep learning.", finish_reason="STOP", model="gemini-2.5-flash"
        )

        request = seen["request"]
        assert request.url.path.endswith("models/gemini-2.5-flash:streamGenerateContent")
        assert request.url.params["alt"] == "sse"
        payload = json.loads(request.content)
        assert payload["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert payload["contents"][0]["role"] == "user"

    def test_assistant_role_mapped(self):
        """Test assistant turns use Gemini's model role."""
        provider = GeminiProvider(api_key="test-key")
        request = provider._build_request(
            "", [ChatMessage("user", "hi"), ChatMessage("assistant", "hello")]
        )

        assert [c["role"] for c in request["contents"]] == ["user", "model"]
        assert "systemInstruction" not in request

    def test_rate_limit(self):
        """Test a 429 response raises RateLimitError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(429, text="quota"))
        provider = GeminiProvider(api_key="test-key", transport=transport)

        with pytest.raises(RateLimitError):
            drain(provider)

    def test_server_error(self):
        """Test a 500 response raises ProviderError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="oops"))
        provider = GeminiProvider(api_key="test-key", transport=transport)

        with pytest.raises(ProviderError) as exc_info:
            drain(provider)

        assert exc_info.value.status_code == 500

    def test_generate_collects(self):
        """Test generate returns the whole answer."""
        body = sse({"candidates": [{"content": {"parts": [{"text": "All of it."}]}}]})
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=body))
        provider = GeminiProvider(api_key="test-key", transport=transport)

        response = asyncio.run(provider.generate("", MESSAGES))

        assert response.content == "All of it."
        assert response.model == "gemini-2.5-flash"

    def test_requires_api_key(self):
        """Test an API key is mandatory."""
        with pytest.raises(ValueError):
            GeminiProvider(api_key="")


class TestOpenAIProvider:
    """Test suite for OpenAIProvider."""

    def test_streams_until_done(self):
        """Test deltas are read until the [DONE] marker."""
        seen = {}

        def handler(request):
            seen["request"] = request
            body = sse(
                {"choices": [{"delta": {"role": "assistant"}}]},
                {"choices": [{"delta": {"content": "Layers "}}]},
                {"choices": [{"delta": {"content": "of units."}, "finish_reason": "stop"}]},
                "[DONE]",
            )
            return httpx.Response(200, text=body)

        provider = OpenAIProvider(
            api_key="sk-test",
            base_url="https://llm.example.com/v1/",
            transport=httpx.MockTransport(handler),
        )
        events = drain(provider)

        assert [e.text for e in events if isinstance(e, StreamDelta)] == ["Layers ", "of units."]
        assert events[-1].full_text == "Layers of units."
        assert events[-1].finish_reason == "stop"

        request = seen["request"]
        assert str(request.url) == "https://llm.example.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        payload = json.loads(request.content)
        assert payload["stream"] is True
        assert payload["messages"][0] == {"role": "system", "content": "Be brief."}
        assert payload["messages"][1]["role"] == "user"

    def test_rate_limit(self):
        """Test a 429 response raises RateLimitError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited"))
        provider = OpenAIProvider(api_key="sk-test", transport=transport)

        with pytest.raises(RateLimitError):
            drain(provider)

    def test_empty_stream(self):
        """Test a stream without content finishes with empty text."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=sse("[DONE]")))
        provider = OpenAIProvider(api_key="sk-test", transport=transport)

        assert drain(provider) == [StreamFinish(full_text="", finish_reason=None, model="gpt-4o-mini")]


class TestChatModelProvider:
    """Test suite for ChatModelProvider."""

    def test_streams_chat_model(self):
        """Test a LangChain chat model stream is re-emitted as deltas."""
        chat_model = GenericFakeChatModel(messages=iter([AIMessage(content="Deep learning uses layers")]))
        provider = ChatModelProvider(chat_model, model="fake")
        events = drain(provider)

        assert "".join(e.text for e in events if isinstance(e, StreamDelta)) == (
            "Deep learning uses layers"
        )
        assert events[-1].full_text == "Deep learning uses layers"

    def test_message_conversion(self):
        """Test system prompt and roles map to LangChain messages."""
        converted = ChatModelProvider.to_langchain_messages(
            "Be brief.", [ChatMessage("user", "hi"), ChatMessage("assistant", "hello")]
        )

        assert [type(m) for m in converted] == [SystemMessage, HumanMessage, AIMessage]

    def test_quota_error_is_rate_limit(self):
        """Test rate-limit-shaped exceptions map to RateLimitError."""

        class ExhaustedChatModel:
            model = "exhausted"

            async def astream(self, messages):
                raise RuntimeError("Resource has been exhausted (e.g. check quota).")
                yield  # pragma: no cover

        with pytest.raises(RateLimitError) as exc_info:
            drain(ChatModelProvider(ExhaustedChatModel()))

        assert exc_info.value.status_code == 429

    def test_other_error_is_provider_error(self):
        """Test other exceptions map to ProviderError."""

        class BrokenChatModel:
            async def astream(self, messages):
                raise RuntimeError("connection reset")
                yield  # pragma: no cover

        with pytest.raises(ProviderError) as exc_info:
            drain(ChatModelProvider(BrokenChatModel(), model="broken"))

        assert not isinstance(exc_info.value, RateLimitError)


class TestFactory:
    """Test suite for create_provider."""

    def test_gemini(self):
        """Test Gemini provider creation with a default label."""
        provider = create_provider(ProviderConfig(provider="gemini", api_key="k"))

        assert isinstance(provider, GeminiProvider)
        assert provider.label == "gemini:gemini-2.5-flash"

    def test_openai_with_label(self):
        """Test OpenAI provider creation with an explicit label."""
        provider = create_provider(
            ProviderConfig(provider="openai", model="gpt-4o-mini", api_key="k", label="fallback")
        )

        assert isinstance(provider, OpenAIProvider)
        assert provider.label == "fallback"

    def test_unsupported(self):
        """Test unknown providers are rejected."""
        with pytest.raises(ValueError, match="Unsupported LLM provider"):
            create_provider(ProviderConfig(provider="unknown", api_key="k"))

    def test_missing_key(self):
        """Test a provider without a key is rejected."""
        with pytest.raises(ValueError):
            create_provider(ProviderConfig(provider="gemini", api_key=""))
