"""
Local model server provider (LM Studio, Ollama and similar).

Speaks the OpenAI-compatible dialect under `{base}/v1` and, for memory
management and embeddings fallback, the server's native API at the same
host without the `/v1` suffix:

    POST /api/generate    load/unload a model (keep_alive)
    GET  /api/ps          models currently resident in memory
    POST /api/embeddings  native embeddings endpoint
    POST /api/chat        native chat (NDJSON streaming)
"""
from __future__ import annotations

import re
from typing import Any, AsyncIterator

from ..config import get_logger
from ..exceptions import EmbeddingError, NotebridgeException, ProviderError, TransportError
from ..transport import Transport
from ..utils import parse_data_uri
from .interface import BestEffortResult, CanonicalMessage, ChatRequest, ChatResult, ProviderIdentity
from .openai_impl import OpenAICompatibleProvider, parse_openai_tool_calls
from .streaming import Framing, iter_text_deltas
from .tool_calls import extract_text_tool_call

logger = get_logger("providers.local")

_V1_SUFFIX = re.compile(r"/v1/?$")


def to_native_messages(messages: list[CanonicalMessage]) -> list[dict[str, Any]]:
    """Canonical messages to the native `/api/chat` shape (images as bare base64)."""
    converted = []
    for msg in messages:
        entry: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
        if msg.images:
            entry["images"] = [parse_data_uri(image)[1] for image in msg.images]
        if msg.tool_calls:
            entry["tool_calls"] = [
                {"function": {"name": call.function_name, "arguments": call.arguments_json}}
                for call in msg.tool_calls
            ]
        converted.append(entry)
    return converted


class LocalProvider(OpenAICompatibleProvider):
    """
    Provider for a locally hosted model server.

    Features:
    - No API key required
    - Explicit load/unload of models (Smart Memory)
    - Embeddings with a native-endpoint fallback on 404
    - Optional native NDJSON chat wire format
    """

    requires_api_key = False

    def __init__(
        self,
        identity: ProviderIdentity,
        transport: Transport,
        wire_format: str = "openai",
    ) -> None:
        super().__init__(identity, transport)
        self.wire_format = wire_format

    @property
    def native_base_url(self) -> str:
        return _V1_SUFFIX.sub("", self.identity.base_url)

    # =========================================================================
    # Chat
    # =========================================================================

    def _native_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model_id,
            "messages": to_native_messages(request.messages),
            "stream": stream,
        }
        if request.temperature is not None:
            body["options"] = {"temperature": request.temperature}
        if request.tools:
            body["tools"] = request.tools
        return body

    async def complete(self, request: ChatRequest) -> ChatResult:
        if self.wire_format != "native":
            return await super().complete(request)

        data = await self.transport.request(
            f"{self.native_base_url}/api/chat",
            "POST",
            self._headers(),
            self._native_body(request, stream=False),
            cancel_token=request.cancel_token,
        )
        message = data.get("message") if isinstance(data, dict) else None
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
        if self.wire_format != "native":
            deltas = super().stream(request)
        else:
            fragments = self.transport.stream_request(
                f"{self.native_base_url}/api/chat",
                "POST",
                self._headers(),
                self._native_body(request, stream=True),
                cancel_token=request.cancel_token,
            )
            deltas = iter_text_deltas(fragments, Framing.NDJSON, ("message", "content"))
        try:
            async for delta in deltas:
                yield delta
        finally:
            await deltas.aclose()

    # =========================================================================
    # Memory Management
    # =========================================================================

    async def unload_model(self, model: str) -> BestEffortResult:
        """Ask the server to drop `model` from memory (keep_alive: 0)."""
        try:
            await self.transport.request(
                f"{self.native_base_url}/api/generate",
                "POST",
                self._headers(),
                {"model": model, "keep_alive": 0},
            )
        except NotebridgeException as e:
            logger.warning("Failed to unload model %s: %s", model, e.message)
            return BestEffortResult(ok=False, detail=e.message)
        logger.info("Unloaded model %s", model)
        return BestEffortResult(ok=True, detail=f"Unloaded {model}")

    async def preload_model(self, model: str) -> BestEffortResult:
        """Load `model` and keep it resident indefinitely (keep_alive: -1)."""
        try:
            await self.transport.request(
                f"{self.native_base_url}/api/generate",
                "POST",
                self._headers(),
                {"model": model, "prompt": "", "keep_alive": -1},
            )
        except NotebridgeException as e:
            logger.warning("Failed to preload model %s: %s", model, e.message)
            return BestEffortResult(ok=False, detail=e.message)
        logger.info("Preloaded model %s", model)
        return BestEffortResult(ok=True, detail=f"Loaded {model}")

    async def list_running_models(self) -> list[str]:
        """Names of models currently in memory; empty when unknown."""
        try:
            data = await self.transport.request(f"{self.native_base_url}/api/ps", "GET", self._headers())
        except NotebridgeException as e:
            logger.debug("Running model query failed: %s", e.message)
            return []

        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        names = [m.get("name") or m.get("model") for m in models if isinstance(m, dict)]
        return [name for name in names if name]

    # =========================================================================
    # Embeddings
    # =========================================================================

    async def create_embedding(self, model: str, text: str) -> list[float]:
        """
        Embed `text` with `model`.

        Tries the OpenAI-compatible `/embeddings` endpoint first and, when
        the server answers 404, the native `/api/embeddings` endpoint.

        Raises:
            TransportError: Endpoint failure (the first error when both fail)
            EmbeddingError: Response without a vector
        """
        try:
            data = await self.transport.request(
                f"{self.identity.base_url}/embeddings",
                "POST",
                self._headers(),
                {"input": text, "model": model},
            )
        except TransportError as e:
            if e.upstream_status != 404:
                raise
            logger.warning("Standard embeddings endpoint returned 404, trying native /api/embeddings")
            try:
                data = await self.transport.request(
                    f"{self.native_base_url}/api/embeddings",
                    "POST",
                    self._headers(),
                    {"model": model, "prompt": text},
                )
            except NotebridgeException as inner:
                logger.error("Native embeddings fallback also failed: %s", inner.message)
                raise e
            vector = data.get("embedding") if isinstance(data, dict) else None
        else:
            vector = None
            entries = data.get("data") if isinstance(data, dict) else None
            if isinstance(entries, list) and entries and isinstance(entries[0], dict):
                vector = entries[0].get("embedding")

        if not isinstance(vector, list):
            raise EmbeddingError(f"No embedding returned by model {model}")
        return [float(x) for x in vector]
