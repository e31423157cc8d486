"""External issue tracker integrations"""

from echo.integrations.base import Capability, IssueTrackerError, IssueTrackerProvider
from echo.integrations.github import GitHubClient, github_provider
from echo.integrations.registry import ProviderRegistry, integration_registry

# Built-in providers
integration_registry.register(github_provider)

__all__ = [
    "Capability",
    "GitHubClient",
    "IssueTrackerError",
    "IssueTrackerProvider",
    "ProviderRegistry",
    "integration_registry",
]
