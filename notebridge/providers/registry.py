"""
Registry of configured model providers, keyed by provider id.
"""
from __future__ import annotations

from ..config import get_logger
from .interface import ModelProvider

logger = get_logger("providers.registry")


class ProviderRegistry:
    """
    Ordered mapping of provider id to adapter.

    Re-registering an id replaces the adapter in place (the first
    registration position is kept). Callers that already hold an adapter
    keep using it until they finish.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ModelProvider] = {}

    def register(self, provider: ModelProvider) -> None:
        replaced = provider.id in self._providers
        self._providers[provider.id] = provider
        logger.debug("%s provider %s", "Replaced" if replaced else "Registered", provider.id)

    def get(self, provider_id: str) -> ModelProvider | None:
        return self._providers.get(provider_id)

    def all(self) -> list[ModelProvider]:
        return list(self._providers.values())

    def remove(self, provider_id: str) -> bool:
        removed = self._providers.pop(provider_id, None) is not None
        if removed:
            logger.debug("Removed provider %s", provider_id)
        return removed

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)
