"""Shared route dependencies, overridable in tests"""

from functools import lru_cache

from sqlalchemy.ext.asyncio import async_sessionmaker

from echo.core.database import async_session
from echo.integrations import integration_registry
from echo.integrations.registry import ProviderRegistry
from echo.webhooks import WebhookDispatcher


def get_registry() -> ProviderRegistry:
    return integration_registry


def get_session_factory() -> async_sessionmaker:
    """Sessions for background tasks, which outlive the request session"""
    return async_session


@lru_cache
def get_dispatcher() -> WebhookDispatcher:
    """One dispatcher per process so the retry guard set is shared"""
    return WebhookDispatcher()
