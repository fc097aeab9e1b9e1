"""
Google Gemini (Generative Language REST API) provider implementation.

Uses `generateContent` for completions and `streamGenerateContent?alt=sse`
for streaming. The API key travels in the `x-goog-api-key` header rather
than the query string so it never shows up in logged URLs.
"""
from __future__ import annotations

import json
import time
from typing import Any, AsyncIterator

from ..config import get_logger
from ..exceptions import ConfigurationError, NotebridgeException, ProviderError
from ..transport import Transport
from ..utils import parse_data_uri
from .capabilities import infer_gemini_capabilities
from .interface import (
    CanonicalMessage,
    ChatRequest,
    ChatResult,
    ModelInfo,
    ModelProvider,
    ProviderIdentity,
    ToolCall,
)
from .streaming import Framing, dig, iter_payloads

logger = get_logger("providers.gemini")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"

FALLBACK_MODELS = [
    ("gemini-1.5-pro", "Gemini 1.5 Pro"),
    ("gemini-1.5-flash", "Gemini 1.5 Flash"),
    ("gemini-1.5-flash-8b", "Gemini 1.5 Flash-8B"),
    ("gemini-2.0-flash-exp", "Gemini 2.0 Flash (Experimental)"),
]


def to_gemini_contents(messages: list[CanonicalMessage]) -> tuple[str, list[dict[str, Any]]]:
    """
    Split canonical messages into (system_instruction, contents).

    Assistant turns map to role "model"; every other role maps to "user".
    """
    system_parts = []
    contents = []
    tool_names: dict[str, str] = {}

    for msg in messages:
        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
            continue

        parts: list[dict[str, Any]] = []
        if msg.role == "tool":
            name = tool_names.get(msg.tool_call_id or "", msg.tool_call_id or "tool")
            parts.append({"functionResponse": {"name": name, "response": {"content": msg.content or ""}}})
        else:
            if msg.content or not (msg.images or msg.tool_calls):
                parts.append({"text": msg.content or ""})
            for image in msg.images:
                mime_type, data = parse_data_uri(image)
                parts.append({"inlineData": {"mimeType": mime_type, "data": data}})
            for call in msg.tool_calls:
                tool_names[call.id] = call.function_name
                try:
                    args = json.loads(call.arguments_json) if call.arguments_json else {}
                except ValueError:
                    args = {}
                parts.append({"functionCall": {"name": call.function_name, "args": args}})

        contents.append({"role": "model" if msg.role == "assistant" else "user", "parts": parts})

    return "\n".join(system_parts), contents


def to_gemini_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    declarations = []
    for tool in tools:
        function = tool.get("function", tool)
        declaration = {"name": function["name"], "description": function.get("description", "")}
        if function.get("parameters"):
            declaration["parameters"] = function["parameters"]
        declarations.append(declaration)
    return [{"functionDeclarations": declarations}]


class GeminiProvider(ModelProvider):
    """Provider for the Gemini REST API."""

    def __init__(self, identity: ProviderIdentity, transport: Transport) -> None:
        super().__init__(identity)
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self.identity.api_key}

    def _ensure_configured(self) -> None:
        if not self.identity.api_key:
            raise ConfigurationError(f"{self.name} API key is not configured")

    def _model_url(self, model: str, method: str) -> str:
        return f"{self.identity.base_url}/models/{model or DEFAULT_GEMINI_MODEL}:{method}"

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        system, contents = to_gemini_contents(request.messages)
        body: dict[str, Any] = {"contents": contents}
        if request.temperature is not None:
            body["generationConfig"] = {"temperature": request.temperature}
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if request.tools and request.tool_choice != "none":
            body["tools"] = to_gemini_tools(request.tools)
        return body

    # =========================================================================
    # ModelProvider
    # =========================================================================

    async def list_models(self) -> list[ModelInfo]:
        models: list[ModelInfo] = []
        try:
            self._ensure_configured()
            data = await self.transport.request(f"{self.identity.base_url}/models", "GET", self._headers())
            for entry in (data.get("models") or []) if isinstance(data, dict) else []:
                if "generateContent" not in (entry.get("supportedGenerationMethods") or []):
                    continue
                model_id = entry.get("name", "").removeprefix("models/")
                if not model_id:
                    continue
                models.append(
                    ModelInfo(
                        id=model_id,
                        name=entry.get("displayName") or model_id,
                        provider_id=self.id,
                        capabilities=infer_gemini_capabilities(model_id),
                        context_window=entry.get("inputTokenLimit"),
                    )
                )
        except NotebridgeException as e:
            logger.warning("Gemini: failed to fetch models, using fallback: %s", e.message)

        if models:
            return models
        return [
            ModelInfo(id=model_id, name=name, provider_id=self.id, capabilities=infer_gemini_capabilities(model_id))
            for model_id, name in FALLBACK_MODELS
        ]

    async def complete(self, request: ChatRequest) -> ChatResult:
        self._ensure_configured()

        data = await self.transport.request(
            self._model_url(request.model_id, "generateContent"),
            "POST",
            self._headers(),
            self.build_body(request),
            cancel_token=request.cancel_token,
        )
        parts = dig(data, ("candidates", 0, "content", "parts"))
        if not isinstance(parts, list):
            if dig(data, ("candidates", 0)) is None:
                raise ProviderError(f"{self.name} response contained no candidates")
            parts = []

        texts = []
        tool_calls = []
        for index, part in enumerate(parts):
            if "text" in part:
                texts.append(part["text"])
            elif "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append(
                    ToolCall(
                        id=f"call_{int(time.time() * 1000)}_{index}",
                        function_name=call.get("name", ""),
                        arguments_json=json.dumps(call.get("args") or {}),
                    )
                )
        return ChatResult(content="".join(texts), tool_calls=tool_calls)

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        self._ensure_configured()

        fragments = self.transport.stream_request(
            f"{self._model_url(request.model_id, 'streamGenerateContent')}?alt=sse",
            "POST",
            self._headers(),
            self.build_body(request),
            cancel_token=request.cancel_token,
        )
        payloads = iter_payloads(fragments, Framing.EVENT)
        try:
            async for payload in payloads:
                parts = dig(payload, ("candidates", 0, "content", "parts"))
                for part in parts or []:
                    text = part.get("text") if isinstance(part, dict) else None
                    if text:
                        yield text
        finally:
            await payloads.aclose()
