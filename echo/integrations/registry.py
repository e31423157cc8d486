"""Runtime registry of issue tracker providers, keyed by provider type"""

import logging
from typing import Dict, List, Optional

from echo.integrations.base import Capability, IssueTrackerProvider, ProviderMetadata

logger = logging.getLogger("echo.integrations")


class ProviderNotFound(KeyError):
    pass


class ProviderRegistry:
    def __init__(self):
        self._providers: Dict[str, IssueTrackerProvider] = {}

    def register(self, provider: IssueTrackerProvider) -> None:
        provider_type = provider.metadata.type
        if provider_type in self._providers:
            logger.warning("Provider %s is already registered, overwriting", provider_type)
        self._providers[provider_type] = provider

    def get(self, provider_type: str) -> Optional[IssueTrackerProvider]:
        return self._providers.get(provider_type)

    def get_or_raise(self, provider_type: str) -> IssueTrackerProvider:
        provider = self._providers.get(provider_type)
        if provider is None:
            raise ProviderNotFound(f"Integration provider '{provider_type}' not found")
        return provider

    def all(self) -> List[IssueTrackerProvider]:
        return list(self._providers.values())

    def with_capability(self, capability: Capability) -> List[IssueTrackerProvider]:
        return [p for p in self._providers.values() if p.supports(capability)]

    def metadata(self) -> List[ProviderMetadata]:
        return [p.metadata for p in self._providers.values()]

    def __contains__(self, provider_type: str) -> bool:
        return provider_type in self._providers

    def __len__(self) -> int:
        return len(self._providers)


integration_registry = ProviderRegistry()
