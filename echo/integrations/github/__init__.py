from echo.integrations.github.client import GitHubClient
from echo.integrations.github.provider import GitHubProvider, github_provider

__all__ = ["GitHubClient", "GitHubProvider", "github_provider"]
