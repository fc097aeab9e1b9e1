"""
Model Providers - Factory module for backend adapters.

Registers one adapter per configured backend. Hosted backends are only
registered when their API key is present; clearing a key removes the
adapter on the next reconfiguration.
"""
from __future__ import annotations

from ..config import Settings, get_logger
from ..transport import Transport
from .anthropic_impl import ANTHROPIC_BASE_URL, AnthropicProvider
from .gemini_impl import GEMINI_BASE_URL, GeminiProvider
from .interface import (
    BestEffortResult,
    CanonicalMessage,
    ChatRequest,
    ChatResult,
    ModelCapabilities,
    ModelInfo,
    ModelProvider,
    ProviderIdentity,
    ToolCall,
)
from .local_impl import LocalProvider
from .openai_impl import OpenAICompatibleProvider
from .registry import ProviderRegistry

logger = get_logger("providers")

# (id, display name, base url, settings attribute holding the key)
HOSTED_OPENAI_COMPATIBLE = [
    ("openai", "OpenAI", "https://api.openai.com/v1", "OPENAI_API_KEY"),
    ("grok", "xAI Grok", "https://api.x.ai/v1", "GROK_API_KEY"),
    ("openrouter", "OpenRouter", "https://openrouter.ai/api/v1", "OPENROUTER_API_KEY"),
]


def configure_registry(registry: ProviderRegistry, settings: Settings, transport: Transport) -> ProviderRegistry:
    """
    Bring `registry` in line with `settings`.

    Args:
        registry: Registry to update in place
        settings: Current settings
        transport: Transport shared by every adapter

    Returns:
        The same registry, for chaining
    """
    if settings.LOCAL_BASE_URL:
        registry.register(
            LocalProvider(
                ProviderIdentity("local", "Local", settings.LOCAL_BASE_URL, settings.LOCAL_API_KEY),
                transport,
                wire_format=settings.LOCAL_WIRE_FORMAT,
            )
        )
    else:
        registry.remove("local")

    for provider_id, display_name, base_url, key_field in HOSTED_OPENAI_COMPATIBLE:
        api_key = getattr(settings, key_field)
        if api_key:
            registry.register(
                OpenAICompatibleProvider(ProviderIdentity(provider_id, display_name, base_url, api_key), transport)
            )
        else:
            registry.remove(provider_id)

    if settings.ANTHROPIC_API_KEY:
        registry.register(
            AnthropicProvider(
                ProviderIdentity("anthropic", "Anthropic", ANTHROPIC_BASE_URL, settings.ANTHROPIC_API_KEY),
                transport,
                max_tokens=settings.MAX_COMPLETION_TOKENS,
            )
        )
    else:
        registry.remove("anthropic")

    if settings.GEMINI_API_KEY:
        registry.register(
            GeminiProvider(
                ProviderIdentity("gemini", "Google Gemini", GEMINI_BASE_URL, settings.GEMINI_API_KEY),
                transport,
            )
        )
    else:
        registry.remove("gemini")

    logger.info("Configured providers: %s", ", ".join(p.id for p in registry.all()) or "none")
    return registry


__all__ = [
    "AnthropicProvider",
    "BestEffortResult",
    "CanonicalMessage",
    "ChatRequest",
    "ChatResult",
    "GeminiProvider",
    "LocalProvider",
    "ModelCapabilities",
    "ModelInfo",
    "ModelProvider",
    "OpenAICompatibleProvider",
    "ProviderIdentity",
    "ProviderRegistry",
    "ToolCall",
    "configure_registry",
]
