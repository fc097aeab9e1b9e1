"""Tests for the provider adapters against a scripted transport."""
from __future__ import annotations

import json

import pytest

from notebridge.exceptions import ConfigurationError, EmbeddingError, ProviderError, TransportError
from notebridge.providers import (
    AnthropicProvider,
    CanonicalMessage,
    ChatRequest,
    GeminiProvider,
    LocalProvider,
    OpenAICompatibleProvider,
    ProviderIdentity,
    ToolCall,
)
from notebridge.providers.anthropic_impl import FALLBACK_MODELS as ANTHROPIC_FALLBACK, to_anthropic_messages
from notebridge.providers.gemini_impl import FALLBACK_MODELS as GEMINI_FALLBACK, to_gemini_contents
from notebridge.providers.openai_impl import to_openai_messages

IMAGE = "data:image/png;base64,iVBORw0KGgo="


def _request(*messages: CanonicalMessage, **kwargs) -> ChatRequest:
    return ChatRequest(messages=list(messages), **kwargs)


async def _collect(aiter) -> list[str]:
    return [item async for item in aiter]


# =============================================================================
# OpenAI-compatible
# =============================================================================

class TestOpenAICompatible:
    @pytest.fixture
    def provider(self, fake_transport) -> OpenAICompatibleProvider:
        return OpenAICompatibleProvider(
            ProviderIdentity("openai", "OpenAI", "https://api.openai.com/v1", "sk-test"),
            fake_transport,
        )

    def test_message_conversion(self):
        converted = to_openai_messages([
            CanonicalMessage(role="user", content="What is this?", images=[IMAGE]),
            CanonicalMessage(
                role="assistant",
                content=None,
                tool_calls=[ToolCall("call_1", "search", '{"q":"x"}')],
            ),
            CanonicalMessage(role="tool", content="result", tool_call_id="call_1"),
        ])

        assert converted[0]["content"] == [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": IMAGE}},
        ]
        assert converted[1]["content"] == ""
        assert converted[1]["tool_calls"][0]["function"] == {"name": "search", "arguments": '{"q":"x"}'}
        assert converted[2]["tool_call_id"] == "call_1"

    @pytest.mark.asyncio
    async def test_stream_yields_deltas(self, provider, fake_transport, sse_lines):
        fake_transport.on_stream(
            "POST",
            "/chat/completions",
            [
                sse_lines('{"choices":[{"delta":{"content":"Hel"}}]}'),
                'data: {"choices":[{"delta":{"content":"lo"}}]}\n\ndata: [DONE]\n\n',
            ],
        )

        deltas = await _collect(provider.stream(_request(CanonicalMessage("user", "hi"), model_id="gpt-4o")))

        assert deltas == ["Hel", "lo"]
        sent = fake_transport.requests[0]
        assert sent.url == "https://api.openai.com/v1/chat/completions"
        assert sent.headers["Authorization"] == "Bearer sk-test"
        assert sent.body["stream"] is True
        assert sent.body["model"] == "gpt-4o"
        assert "tools" not in sent.body

    @pytest.mark.asyncio
    async def test_complete_with_structured_tool_calls(self, provider, fake_transport):
        fake_transport.on_request("POST", "/chat/completions", {
            "choices": [{
                "message": {
                    "content": None,
                    "tool_calls": [{
                        "id": "call_9",
                        "type": "function",
                        "function": {"name": "search", "arguments": {"q": "tides"}},
                    }],
                },
            }],
        })

        result = await provider.complete(_request(CanonicalMessage("user", "find tides"), model_id="gpt-4o"))

        assert result.content == ""
        assert result.tool_calls[0].id == "call_9"
        assert json.loads(result.tool_calls[0].arguments_json) == {"q": "tides"}

    @pytest.mark.asyncio
    async def test_complete_recovers_text_tool_call(self, provider, fake_transport):
        fake_transport.on_request("POST", "/chat/completions", {
            "choices": [{"message": {"content": '{"tool_uses":[{"recipient_name":"functions.search","parameters":{"q":"a"}}]}'}}],
        })

        result = await provider.complete(_request(CanonicalMessage("user", "x")))

        assert result.content == ""
        assert result.tool_calls[0].function_name == "search"

    @pytest.mark.asyncio
    async def test_missing_key_raises_before_network(self, fake_transport):
        provider = OpenAICompatibleProvider(
            ProviderIdentity("openai", "OpenAI", "https://api.openai.com/v1", ""),
            fake_transport,
        )

        with pytest.raises(ConfigurationError):
            await provider.complete(_request(CanonicalMessage("user", "x")))
        assert fake_transport.requests == []
        assert await provider.list_models() == []

    @pytest.mark.asyncio
    async def test_list_models_sorted(self, provider, fake_transport):
        fake_transport.on_request("GET", "/models", {"data": [{"id": "gpt-4o"}, {"id": "gpt-3.5-turbo"}]})

        models = await provider.list_models()

        assert [m.id for m in models] == ["gpt-3.5-turbo", "gpt-4o"]
        assert all(m.provider_id == "openai" for m in models)


# =============================================================================
# Local
# =============================================================================

class TestLocalProvider:
    @pytest.mark.asyncio
    async def test_embedding_standard_endpoint(self, local_provider, fake_transport):
        fake_transport.on_request("POST", "/v1/embeddings", {"data": [{"embedding": [0.1, 0.2]}]})

        vector = await local_provider.create_embedding("nomic-embed-text", "hello")

        assert vector == [0.1, 0.2]
        assert fake_transport.requests[0].body == {"input": "hello", "model": "nomic-embed-text"}

    @pytest.mark.asyncio
    async def test_embedding_falls_back_to_native_on_404(self, local_provider, fake_transport):
        fake_transport.on_request("POST", "/v1/embeddings", TransportError("Not Found", upstream_status=404))
        fake_transport.on_request("POST", "/api/embeddings", {"embedding": [1, 2, 3]})

        vector = await local_provider.create_embedding("nomic-embed-text", "hello")

        assert vector == [1.0, 2.0, 3.0]
        native = fake_transport.calls_to("/api/embeddings")[0]
        assert native.url == "http://localhost:1234/api/embeddings"
        assert native.body == {"model": "nomic-embed-text", "prompt": "hello"}

    @pytest.mark.asyncio
    async def test_embedding_other_errors_propagate(self, local_provider, fake_transport):
        fake_transport.on_request("POST", "/v1/embeddings", TransportError("boom", upstream_status=500))

        with pytest.raises(TransportError) as exc_info:
            await local_provider.create_embedding("m", "hello")

        assert exc_info.value.upstream_status == 500
        assert fake_transport.calls_to("/api/embeddings") == []

    @pytest.mark.asyncio
    async def test_embedding_without_vector(self, local_provider, fake_transport):
        fake_transport.on_request("POST", "/v1/embeddings", {"data": []})

        with pytest.raises(EmbeddingError):
            await local_provider.create_embedding("m", "hello")

    @pytest.mark.asyncio
    async def test_unload_and_preload_are_best_effort(self, local_provider, fake_transport):
        fake_transport.on_request("POST", "/api/generate", {}, TransportError("down"))

        loaded = await local_provider.preload_model("llama3:8b")
        unloaded = await local_provider.unload_model("llama3:8b")

        assert loaded.ok is True
        assert unloaded.ok is False
        bodies = [r.body for r in fake_transport.calls_to("/api/generate")]
        assert bodies == [
            {"model": "llama3:8b", "prompt": "", "keep_alive": -1},
            {"model": "llama3:8b", "keep_alive": 0},
        ]

    @pytest.mark.asyncio
    async def test_running_models(self, local_provider, fake_transport):
        fake_transport.on_request("GET", "/api/ps", {"models": [{"name": "llama3:8b"}, {"model": "phi3"}]})

        assert await local_provider.list_running_models() == ["llama3:8b", "phi3"]

    @pytest.mark.asyncio
    async def test_native_wire_streams_ndjson(self, fake_transport):
        provider = LocalProvider(
            ProviderIdentity("local", "Local", "http://localhost:11434/v1", ""),
            fake_transport,
            wire_format="native",
        )
        fake_transport.on_stream("POST", "/api/chat", [
            '{"message":{"content":"Hel"}}\n{"mess',
            'age":{"content":"lo"}}\n{"done":true}\n',
        ])

        deltas = await _collect(provider.stream(_request(CanonicalMessage("user", "hi", images=[IMAGE]), model_id="llava")))

        assert deltas == ["Hel", "lo"]
        body = fake_transport.requests[0].body
        assert body["messages"][0]["images"] == ["iVBORw0KGgo="]
        assert "Authorization" not in fake_transport.requests[0].headers


# =============================================================================
# Anthropic
# =============================================================================

class TestAnthropic:
    @pytest.fixture
    def provider(self, fake_transport) -> AnthropicProvider:
        return AnthropicProvider(
            ProviderIdentity("anthropic", "Anthropic", "https://api.anthropic.com/v1", "ak-test"),
            fake_transport,
            max_tokens=1024,
        )

    def test_message_conversion(self):
        system, messages = to_anthropic_messages([
            CanonicalMessage("system", "Be brief."),
            CanonicalMessage("user", "Look", images=[IMAGE]),
            CanonicalMessage("assistant", None, tool_calls=[
                ToolCall("t1", "a", '{"x":1}'),
                ToolCall("t2", "b", "{}"),
            ]),
            CanonicalMessage("tool", "ra", tool_call_id="t1"),
            CanonicalMessage("tool", "rb", tool_call_id="t2"),
        ])

        assert system == "Be brief."
        assert messages[0]["content"][0] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="},
        }
        assert messages[0]["content"][1] == {"type": "text", "text": "Look"}
        assert messages[1]["content"][0] == {"type": "tool_use", "id": "t1", "name": "a", "input": {"x": 1}}
        assert len(messages) == 3
        assert [b["tool_use_id"] for b in messages[2]["content"]] == ["t1", "t2"]

    @pytest.mark.asyncio
    async def test_stream_text_deltas(self, provider, fake_transport):
        fake_transport.on_stream("POST", "/messages", [
            'event: message_start\ndata: {"type":"message_start"}\n\n',
            'event: content_block_delta\ndata: {"type":"content_block_delta","delta":{"type":"text_delta","text":"Hi"}}\n\n',
            'event: content_block_delta\ndata: {"type":"content_block_delta","delta":{"type":"input_json_delta","partial_json":"{"}}\n\n',
            'event: message_stop\ndata: {"type":"message_stop"}\n\n',
        ])

        deltas = await _collect(provider.stream(_request(
            CanonicalMessage("system", "sys"),
            CanonicalMessage("user", "hello"),
            model_id="claude-3-haiku-20240307",
        )))

        assert deltas == ["Hi"]
        sent = fake_transport.requests[0]
        assert sent.headers["x-api-key"] == "ak-test"
        assert sent.headers["anthropic-version"] == "2023-06-01"
        assert sent.body["system"] == "sys"
        assert sent.body["max_tokens"] == 1024

    @pytest.mark.asyncio
    async def test_complete_maps_tool_use(self, provider, fake_transport):
        fake_transport.on_request("POST", "/messages", {
            "content": [
                {"type": "text", "text": "Let me search."},
                {"type": "tool_use", "id": "toolu_1", "name": "search", "input": {"q": "tides"}},
            ],
        })

        result = await provider.complete(_request(
            CanonicalMessage("user", "find"),
            tools=[{"type": "function", "function": {"name": "search", "parameters": {"type": "object"}}}],
            tool_choice="required",
        ))

        assert result.content == "Let me search."
        assert result.tool_calls == [ToolCall("toolu_1", "search", '{"q": "tides"}')]
        body = fake_transport.requests[0].body
        assert body["tools"] == [{"name": "search", "description": "", "input_schema": {"type": "object"}}]
        assert body["tool_choice"] == {"type": "any"}

    @pytest.mark.asyncio
    async def test_list_models_falls_back_to_static_list(self, provider, fake_transport):
        fake_transport.on_request("GET", "/models", TransportError("unreachable"))

        models = await provider.list_models()

        assert [m.id for m in models] == [model_id for model_id, _ in ANTHROPIC_FALLBACK]


# =============================================================================
# Gemini
# =============================================================================

class TestGemini:
    @pytest.fixture
    def provider(self, fake_transport) -> GeminiProvider:
        return GeminiProvider(
            ProviderIdentity("gemini", "Google Gemini", "https://generativelanguage.googleapis.com/v1beta", "gk"),
            fake_transport,
        )

    def test_content_conversion(self):
        system, contents = to_gemini_contents([
            CanonicalMessage("system", "Be brief."),
            CanonicalMessage("user", "Look", images=[IMAGE]),
            CanonicalMessage("assistant", None, tool_calls=[ToolCall("c1", "search", '{"q":"x"}')]),
            CanonicalMessage("tool", "found", tool_call_id="c1"),
        ])

        assert system == "Be brief."
        assert contents[0] == {
            "role": "user",
            "parts": [{"text": "Look"}, {"inlineData": {"mimeType": "image/png", "data": "iVBORw0KGgo="}}],
        }
        assert contents[1] == {"role": "model", "parts": [{"functionCall": {"name": "search", "args": {"q": "x"}}}]}
        assert contents[2]["parts"][0]["functionResponse"]["name"] == "search"

    @pytest.mark.asyncio
    async def test_stream_uses_sse_endpoint(self, provider, fake_transport, sse_lines):
        fake_transport.on_stream("POST", ":streamGenerateContent?alt=sse", [
            sse_lines(
                '{"candidates":[{"content":{"parts":[{"text":"Hel"}]}}]}',
                '{"candidates":[{"content":{"parts":[{"text":"lo"}]}}]}',
            ),
        ])

        deltas = await _collect(provider.stream(_request(CanonicalMessage("user", "hi"), model_id="gemini-1.5-pro")))

        assert deltas == ["Hel", "lo"]
        sent = fake_transport.requests[0]
        assert sent.url.endswith("/models/gemini-1.5-pro:streamGenerateContent?alt=sse")
        assert sent.headers["x-goog-api-key"] == "gk"

    @pytest.mark.asyncio
    async def test_complete_function_call(self, provider, fake_transport):
        fake_transport.on_request("POST", ":generateContent", {
            "candidates": [{"content": {"parts": [{"functionCall": {"name": "search", "args": {"q": "x"}}}]}}],
        })

        result = await provider.complete(_request(CanonicalMessage("user", "find")))

        assert result.content == ""
        assert result.tool_calls[0].function_name == "search"
        assert json.loads(result.tool_calls[0].arguments_json) == {"q": "x"}

    @pytest.mark.asyncio
    async def test_complete_without_candidates(self, provider, fake_transport):
        fake_transport.on_request("POST", ":generateContent", {"promptFeedback": {"blockReason": "SAFETY"}})

        with pytest.raises(ProviderError):
            await provider.complete(_request(CanonicalMessage("user", "x")))

    @pytest.mark.asyncio
    async def test_list_models_filters_and_strips_prefix(self, provider, fake_transport):
        fake_transport.on_request("GET", "/models", {"models": [
            {"name": "models/gemini-1.5-flash", "supportedGenerationMethods": ["generateContent"]},
            {"name": "models/text-embedding-004", "supportedGenerationMethods": ["embedContent"]},
        ]})

        models = await provider.list_models()

        assert [m.id for m in models] == ["gemini-1.5-flash"]

    @pytest.mark.asyncio
    async def test_list_models_empty_uses_fallback(self, provider, fake_transport):
        fake_transport.on_request("GET", "/models", {"models": []})

        models = await provider.list_models()

        assert [m.id for m in models] == [model_id for model_id, _ in GEMINI_FALLBACK]
