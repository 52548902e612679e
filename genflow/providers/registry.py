"""Provider registry - central registry for all configured provider backends."""

from typing import Optional
import logging

from .base import Provider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Central registry for provider instances, keyed by provider id.

    The router resolves candidate ids through this registry; an id with no
    registered provider is skipped as unavailable.
    """

    def __init__(self):
        self._providers: dict[str, Provider] = {}

    def register(self, provider: Provider) -> None:
        """
        Register a provider.

        Args:
            provider: The provider to register

        Raises:
            ValueError: If the provider has no id or the id is taken
        """
        if not provider.id:
            raise ValueError(f"Provider {provider.__class__.__name__} has no id")

        if provider.id in self._providers:
            raise ValueError(f"Provider '{provider.id}' is already registered")

        self._providers[provider.id] = provider
        logger.info(f"Registered provider: {provider.id}")

    async def unregister(self, provider_id: str) -> Optional[Provider]:
        """
        Unregister a provider and close it.

        Returns:
            The unregistered provider, or None if not found
        """
        provider = self._providers.pop(provider_id, None)
        if provider:
            await provider.close()
            logger.info(f"Unregistered provider: {provider_id}")
        return provider

    def get(self, provider_id: str) -> Optional[Provider]:
        return self._providers.get(provider_id)

    def get_ids(self) -> list[str]:
        return list(self._providers.keys())

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    async def close_all(self) -> None:
        """Close and remove every provider."""
        for provider_id in list(self._providers):
            await self.unregister(provider_id)

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __iter__(self):
        return iter(self._providers.values())
