"""
Anthropic Messages API provider implementation.

System messages are lifted into the top-level `system` field, images become
base64 source blocks and tool traffic is mapped to `tool_use` /
`tool_result` content blocks.
"""
from __future__ import annotations

import json
from typing import Any, AsyncIterator

from ..config import get_logger
from ..exceptions import ConfigurationError, NotebridgeException, ProviderError
from ..transport import Transport
from ..utils import parse_data_uri
from .interface import (
    CanonicalMessage,
    ChatRequest,
    ChatResult,
    ModelCapabilities,
    ModelInfo,
    ModelProvider,
    ProviderIdentity,
    ToolCall,
)
from .streaming import Framing, iter_payloads

logger = get_logger("providers.anthropic")

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20240620"

_CLAUDE_CAPABILITIES = ModelCapabilities(vision=True, tools=True, reasoning=False)

FALLBACK_MODELS = [
    ("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet (New)"),
    ("claude-3-5-haiku-20241022", "Claude 3.5 Haiku"),
    ("claude-3-5-sonnet-20240620", "Claude 3.5 Sonnet"),
    ("claude-3-opus-20240229", "Claude 3 Opus"),
    ("claude-3-sonnet-20240229", "Claude 3 Sonnet"),
    ("claude-3-haiku-20240307", "Claude 3 Haiku"),
]


def _parse_arguments(arguments_json: str) -> Any:
    try:
        return json.loads(arguments_json) if arguments_json else {}
    except ValueError:
        logger.warning("Tool call arguments are not valid JSON, sending as empty input")
        return {}


def to_anthropic_messages(messages: list[CanonicalMessage]) -> tuple[str, list[dict[str, Any]]]:
    """
    Split canonical messages into (system_prompt, messages).

    Consecutive tool results are grouped into one user turn.
    """
    system_parts = []
    converted: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content or "")
            continue

        if msg.role == "tool":
            block = {"type": "tool_result", "tool_use_id": msg.tool_call_id or "", "content": msg.content or ""}
            previous = converted[-1] if converted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(b.get("type") == "tool_result" for b in previous["content"])
            ):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if msg.images or msg.tool_calls:
            blocks: list[dict[str, Any]] = []
            for image in msg.images:
                media_type, data = parse_data_uri(image)
                blocks.append({"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}})
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.function_name,
                    "input": _parse_arguments(call.arguments_json),
                })
            converted.append({"role": msg.role, "content": blocks})
        else:
            converted.append({"role": msg.role, "content": msg.content or ""})

    return "\n".join(system_parts).strip(), converted


def to_anthropic_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    converted = []
    for tool in tools:
        function = tool.get("function", tool)
        converted.append({
            "name": function["name"],
            "description": function.get("description", ""),
            "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
        })
    return converted


def to_anthropic_tool_choice(tool_choice: Any) -> dict[str, Any] | None:
    if tool_choice in (None, "none"):
        return None
    if tool_choice == "auto":
        return {"type": "auto"}
    if tool_choice == "required":
        return {"type": "any"}
    if isinstance(tool_choice, dict):
        name = (tool_choice.get("function") or {}).get("name")
        if name:
            return {"type": "tool", "name": name}
    return None


class AnthropicProvider(ModelProvider):
    """Provider for the Anthropic Messages API."""

    def __init__(
        self,
        identity: ProviderIdentity,
        transport: Transport,
        max_tokens: int = 4096,
    ) -> None:
        super().__init__(identity)
        self.transport = transport
        self.max_tokens = max_tokens

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.identity.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _ensure_configured(self) -> None:
        if not self.identity.api_key:
            raise ConfigurationError(f"{self.name} API key is not configured")

    def build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        system, messages = to_anthropic_messages(request.messages)
        body: dict[str, Any] = {
            "model": request.model_id or DEFAULT_ANTHROPIC_MODEL,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "stream": stream,
        }
        if system:
            body["system"] = system
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.tools and request.tool_choice != "none":
            body["tools"] = to_anthropic_tools(request.tools)
            choice = to_anthropic_tool_choice(request.tool_choice)
            if choice is not None:
                body["tool_choice"] = choice
        return body

    # =========================================================================
    # ModelProvider
    # =========================================================================

    async def list_models(self) -> list[ModelInfo]:
        try:
            self._ensure_configured()
            data = await self.transport.request(f"{self.identity.base_url}/models", "GET", self._headers())
            entries = data.get("data") if isinstance(data, dict) else None
            if isinstance(entries, list) and entries:
                return [
                    ModelInfo(
                        id=entry["id"],
                        name=entry.get("display_name") or entry["id"],
                        provider_id=self.id,
                        capabilities=_CLAUDE_CAPABILITIES,
                    )
                    for entry in entries
                    if isinstance(entry, dict) and entry.get("id")
                ]
        except NotebridgeException as e:
            logger.warning("Failed to fetch Anthropic models, falling back to static list: %s", e.message)

        return [
            ModelInfo(id=model_id, name=name, provider_id=self.id, capabilities=_CLAUDE_CAPABILITIES)
            for model_id, name in FALLBACK_MODELS
        ]

    async def complete(self, request: ChatRequest) -> ChatResult:
        self._ensure_configured()

        data = await self.transport.request(
            f"{self.identity.base_url}/messages",
            "POST",
            self._headers(),
            self.build_body(request, stream=False),
            cancel_token=request.cancel_token,
        )
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise ProviderError(f"{self.name} response contained no content")

        texts = []
        tool_calls = []
        for block in blocks:
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id", ""),
                        function_name=block.get("name", ""),
                        arguments_json=json.dumps(block.get("input") or {}),
                    )
                )
        return ChatResult(content="".join(texts), tool_calls=tool_calls)

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        self._ensure_configured()

        fragments = self.transport.stream_request(
            f"{self.identity.base_url}/messages",
            "POST",
            self._headers(),
            self.build_body(request, stream=True),
            cancel_token=request.cancel_token,
        )
        payloads = iter_payloads(fragments, Framing.EVENT)
        try:
            async for payload in payloads:
                if not isinstance(payload, dict) or payload.get("type") != "content_block_delta":
                    continue
                delta = payload.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    yield delta["text"]
        finally:
            await payloads.aclose()
