"""
Model gateway: one entry point for every model call.

Routes chat requests to the right backend by scoped model id
(`provider:model`), applies the Smart Memory policy before local calls,
aggregates model listings across backends and produces embeddings for the
indexing pipeline.

Key features:
- Scoped model ids with a configured local default
- Smart Memory: unload the previous local model before switching
- Embedding model auto-detection
- Cooperative cancellation of streams

Usage:
    gateway = ModelGateway(registry)

    async for delta in gateway.stream(ChatRequest(messages, model_id="openai:gpt-4o")):
        print(delta, end="")
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import AsyncIterator

from notebridge.config import get_logger, settings
from notebridge.exceptions import ConfigurationError, EmbeddingError, NotebridgeException
from notebridge.providers import (
    BestEffortResult,
    ChatRequest,
    ChatResult,
    LocalProvider,
    ModelInfo,
    ModelProvider,
    ProviderRegistry,
)
from notebridge.utils import is_usable_vector

logger = get_logger("gateway")

LOCAL_PROVIDER_ID = "local"
_PLACEHOLDER_EMBEDDING_MODELS = {"", "local-model"}


@dataclass(frozen=True)
class GatewayConfig:
    """Routing and memory-management configuration."""
    chat_model: str = field(default_factory=lambda: settings.CHAT_MODEL)
    embedding_model: str = field(default_factory=lambda: settings.EMBEDDING_MODEL)
    temperature: float = field(default_factory=lambda: settings.GENERATION_TEMPERATURE)
    enable_smart_memory: bool = field(default_factory=lambda: settings.ENABLE_SMART_MEMORY)
    auto_unload_on_switch: bool = field(default_factory=lambda: settings.AUTO_UNLOAD_ON_SWITCH)


class ModelGateway:
    """
    Provider-agnostic front door for chat, listing and embeddings.

    The gateway is the only owner of the active local model state; create a
    fresh instance per test.
    """

    def __init__(self, registry: ProviderRegistry, config: GatewayConfig | None = None) -> None:
        self._registry = registry
        self._config = config or GatewayConfig()
        self._active_local_model: str | None = None
        self._detected_embedding_model: str | None = None
        self._memory_lock = asyncio.Lock()

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def active_local_model(self) -> str | None:
        """Local model last used successfully, if known."""
        return self._active_local_model

    def reconfigure(self, config: GatewayConfig) -> None:
        """Swap configuration; forgets the auto-detected embedding model."""
        self._config = config
        self._detected_embedding_model = None

    # =========================================================================
    # Routing
    # =========================================================================

    def resolve(self, model_id: str | None) -> tuple[str, str]:
        """
        Split a model id into (provider_id, model).

        Examples:
            >>> gateway.resolve("openai:gpt-4o")
            ('openai', 'gpt-4o')
            >>> gateway.resolve("")            # configured chat model
            ('local', 'llama3:8b')
            >>> gateway.resolve("mistral")
            ('local', 'mistral')
        """
        model_id = (model_id or "").strip()
        if not model_id or model_id == LOCAL_PROVIDER_ID:
            return LOCAL_PROVIDER_ID, self._config.chat_model

        provider_id, sep, model = model_id.partition(":")
        if not sep:
            return LOCAL_PROVIDER_ID, model_id
        if provider_id == LOCAL_PROVIDER_ID and not model:
            return LOCAL_PROVIDER_ID, self._config.chat_model
        return provider_id, model

    def _provider(self, provider_id: str) -> ModelProvider:
        provider = self._registry.get(provider_id)
        if provider is None:
            raise ConfigurationError(
                f"Provider {provider_id} not found or not configured",
                details=f"Configured providers: {', '.join(p.id for p in self._registry.all()) or 'none'}",
            )
        return provider

    def _local_provider(self) -> LocalProvider:
        provider = self._provider(LOCAL_PROVIDER_ID)
        if not isinstance(provider, LocalProvider):
            raise ConfigurationError("The local provider does not support model management")
        return provider

    def _prepare(self, request: ChatRequest) -> tuple[ModelProvider, ChatRequest]:
        provider_id, model = self.resolve(request.model_id)
        provider = self._provider(provider_id)
        temperature = request.temperature if request.temperature is not None else self._config.temperature
        return provider, replace(request, model_id=model, temperature=temperature)

    # =========================================================================
    # Smart Memory
    # =========================================================================

    async def _apply_smart_memory(self, provider: ModelProvider, model: str, enabled: bool) -> None:
        """Unload the active local model before switching to a different one."""
        if not enabled or not isinstance(provider, LocalProvider):
            return

        async with self._memory_lock:
            active = self._active_local_model
            if active is None or active == model:
                return
            logger.info("Smart Memory: switching %s -> %s, unloading %s", active, model, active)
            result = await provider.unload_model(active)
            if result.ok:
                self._active_local_model = None
            else:
                logger.warning("Smart Memory: unload of %s failed (%s), continuing", active, result.detail)

    def _mark_active(self, provider: ModelProvider, model: str) -> None:
        if isinstance(provider, LocalProvider):
            self._active_local_model = model

    # =========================================================================
    # Public API
    # =========================================================================

    async def list_models(self) -> list[ModelInfo]:
        """
        List models of every backend concurrently.

        A failing backend is logged and left out; ids are scoped as
        `provider:model`.
        """
        providers = self._registry.all()
        results = await asyncio.gather(
            *(provider.list_models() for provider in providers),
            return_exceptions=True,
        )

        models: list[ModelInfo] = []
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Failed to list models for %s: %s", provider.id, result)
                continue
            models.extend(
                replace(model, id=f"{provider.id}:{model.id}", provider_id=provider.id)
                for model in result
            )
        return models

    async def complete(self, request: ChatRequest) -> ChatResult:
        provider, forwarded = self._prepare(request)
        switch_unload = self._config.auto_unload_on_switch or self._config.enable_smart_memory
        await self._apply_smart_memory(provider, forwarded.model_id, switch_unload)

        logger.debug("Completion via %s (model: %s)", provider.id, forwarded.model_id)
        result = await provider.complete(forwarded)
        self._mark_active(provider, forwarded.model_id)
        return result

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        provider, forwarded = self._prepare(request)
        switch_unload = self._config.auto_unload_on_switch or self._config.enable_smart_memory
        await self._apply_smart_memory(provider, forwarded.model_id, switch_unload)

        logger.debug("Streaming via %s (model: %s)", provider.id, forwarded.model_id)
        token = forwarded.cancel_token
        fragments = provider.stream(forwarded)
        started = False
        try:
            async for fragment in fragments:
                if token is not None:
                    token.raise_if_cancelled()
                if not started:
                    started = True
                    self._mark_active(provider, forwarded.model_id)
                yield fragment
        finally:
            await fragments.aclose()

        if not started:
            self._mark_active(provider, forwarded.model_id)

    async def embed(self, text: str) -> list[float]:
        """
        Embed `text` with the local embedding model.

        Raises:
            ConfigurationError: No local provider or no embedding model
            TransportError: Endpoint failure
            EmbeddingError: Empty, non-finite or zero-magnitude vector
        """
        provider = self._local_provider()
        model = await self._embedding_model(provider)

        await self._apply_smart_memory(provider, model, self._config.enable_smart_memory)
        vector = await provider.create_embedding(model, text)
        if self._config.enable_smart_memory:
            self._mark_active(provider, model)

        if not is_usable_vector(vector):
            raise EmbeddingError(f"Embedding model {model} returned an empty, non-finite or zero vector")
        return vector

    async def _embedding_model(self, provider: LocalProvider) -> str:
        configured = self._config.embedding_model.strip()
        if configured not in _PLACEHOLDER_EMBEDDING_MODELS:
            return configured
        if self._detected_embedding_model:
            return self._detected_embedding_model

        logger.info("No embedding model set, attempting auto-detection")
        try:
            models = await provider.list_models()
        except NotebridgeException as e:
            logger.warning("Embedding model auto-detection failed: %s", e.message)
            models = []

        best = next((m for m in models if "embed" in m.id.lower()), None) or (models[0] if models else None)
        if best is None:
            raise ConfigurationError(
                "No embedding model selected",
                details="Set EMBEDDING_MODEL or load an embedding model in the local server",
            )

        logger.info("Auto-detected embedding model: %s", best.id)
        self._detected_embedding_model = best.id
        return best.id

    async def preload(self, model_id: str | None) -> BestEffortResult:
        """Warm a local model so the first real request is fast. Never raises."""
        provider_id, model = self.resolve(model_id)
        if provider_id != LOCAL_PROVIDER_ID:
            return BestEffortResult(ok=False, detail=f"Preload is only supported for local models, got {provider_id}")
        try:
            provider = self._local_provider()
        except ConfigurationError as e:
            logger.warning("Preload skipped: %s", e.message)
            return BestEffortResult(ok=False, detail=e.message)
        return await provider.preload_model(model)

    async def unload(self, model_id: str | None = None) -> BestEffortResult:
        """Unload `model_id`, or the active local model when omitted. Never raises."""
        if model_id:
            provider_id, model = self.resolve(model_id)
            if provider_id != LOCAL_PROVIDER_ID:
                return BestEffortResult(ok=False, detail=f"Unload is only supported for local models, got {provider_id}")
        else:
            model = self._active_local_model
            if model is None:
                return BestEffortResult(ok=False, detail="No active local model")

        try:
            provider = self._local_provider()
        except ConfigurationError as e:
            logger.warning("Unload skipped: %s", e.message)
            return BestEffortResult(ok=False, detail=e.message)

        async with self._memory_lock:
            result = await provider.unload_model(model)
            if model == self._active_local_model:
                self._active_local_model = None
        return result

    async def running_models(self) -> list[str]:
        """Models resident in the local server's memory (best effort)."""
        provider = self._registry.get(LOCAL_PROVIDER_ID)
        if not isinstance(provider, LocalProvider):
            return []
        return await provider.list_running_models()
