"""
OpenAI-compatible provider implementation.

Covers every backend speaking the `/chat/completions` dialect: OpenAI
itself, xAI Grok, OpenRouter and (through LocalProvider) local servers.
"""
from __future__ import annotations

import json
import time
from typing import Any, AsyncIterator

from ..config import get_logger
from ..exceptions import ConfigurationError, ProviderError
from ..transport import Transport
from .capabilities import infer_capabilities
from .interface import (
    CanonicalMessage,
    ChatRequest,
    ChatResult,
    ModelInfo,
    ModelProvider,
    ProviderIdentity,
    ToolCall,
)
from .streaming import Framing, dig, iter_text_deltas
from .tool_calls import extract_text_tool_call

logger = get_logger("providers.openai")


def to_openai_messages(messages: list[CanonicalMessage]) -> list[dict[str, Any]]:
    """
    Convert canonical messages to the chat-completions wire shape.

    Null content is sent as "" because several local servers reject null.
    Images become `image_url` parts carrying the data URI.
    """
    converted = []
    for msg in messages:
        if msg.images:
            content: Any = []
            if msg.content:
                content.append({"type": "text", "text": msg.content})
            for image in msg.images:
                content.append({"type": "image_url", "image_url": {"url": image}})
        else:
            content = msg.content or ""

        entry: dict[str, Any] = {"role": msg.role, "content": content}
        if msg.tool_calls:
            entry["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.function_name, "arguments": call.arguments_json},
                }
                for call in msg.tool_calls
            ]
        if msg.tool_call_id:
            entry["tool_call_id"] = msg.tool_call_id
        converted.append(entry)
    return converted


def parse_openai_tool_calls(raw_calls: Any) -> list[ToolCall]:
    """Structured `tool_calls` of a response message to ToolCall objects."""
    calls = []
    for index, raw in enumerate(raw_calls or []):
        function = raw.get("function") or {}
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        calls.append(
            ToolCall(
                id=raw.get("id") or f"call_{int(time.time() * 1000)}_{index}",
                function_name=function.get("name", ""),
                arguments_json=arguments,
            )
        )
    return calls


class OpenAICompatibleProvider(ModelProvider):
    """
    Provider for `/chat/completions` style APIs.

    Hosted instances require an API key; LocalProvider relaxes that.
    """

    requires_api_key: bool = True

    def __init__(self, identity: ProviderIdentity, transport: Transport) -> None:
        super().__init__(identity)
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.identity.api_key:
            headers["Authorization"] = f"Bearer {self.identity.api_key}"
        return headers

    def _ensure_configured(self) -> None:
        if self.requires_api_key and not self.identity.api_key:
            raise ConfigurationError(f"{self.name} API key is not configured")

    def build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body = {
            "model": request.model_id,
            "messages": to_openai_messages(request.messages),
            "temperature": request.temperature,
            "stream": stream,
            "tools": request.tools or None,
            "tool_choice": request.tool_choice,
        }
        return {key: value for key, value in body.items() if value is not None}

    # =========================================================================
    # ModelProvider
    # =========================================================================

    async def list_models(self) -> list[ModelInfo]:
        if self.requires_api_key and not self.identity.api_key:
            return []

        data = await self.transport.request(f"{self.identity.base_url}/models", "GET", self._headers())
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            logger.warning("%s returned an unexpected model list", self.name)
            return []

        models = [
            ModelInfo(
                id=entry["id"],
                name=entry["id"],
                provider_id=self.id,
                capabilities=infer_capabilities(entry["id"]),
                context_window=entry.get("context_length"),
            )
            for entry in entries
            if isinstance(entry, dict) and entry.get("id")
        ]
        return sorted(models, key=lambda m: m.id)

    async def complete(self, request: ChatRequest) -> ChatResult:
        self._ensure_configured()

        data = await self.transport.request(
            f"{self.identity.base_url}/chat/completions",
            "POST",
            self._headers(),
            self.build_body(request, stream=False),
            cancel_token=request.cancel_token,
        )

        message = dig(data, ("choices", 0, "message"))
        if not isinstance(message, dict):
            raise ProviderError(f"{self.name} response contained no message")

        content = message.get("content") or ""
        tool_calls = parse_openai_tool_calls(message.get("tool_calls"))
        if not tool_calls:
            content, recovered = extract_text_tool_call(content)
            if recovered is not None:
                tool_calls = [recovered]

        return ChatResult(content=content, tool_calls=tool_calls)

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        self._ensure_configured()

        fragments = self.transport.stream_request(
            f"{self.identity.base_url}/chat/completions",
            "POST",
            self._headers(),
            self.build_body(request, stream=True),
            cancel_token=request.cancel_token,
        )
        deltas = iter_text_deltas(fragments, Framing.EVENT, ("choices", 0, "delta", "content"))
        try:
            async for delta in deltas:
                yield delta
        finally:
            await deltas.aclose()
