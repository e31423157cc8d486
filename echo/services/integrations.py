"""Lookups for an organization's tracker integration"""

from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from echo.core.security import decrypt_token
from echo.integrations.base import ProviderConfig
from echo.integrations.registry import ProviderRegistry
from echo.models import Integration


async def get_integration(
    db: AsyncSession, organization_id: str, provider: str = "github"
) -> Optional[Integration]:
    """The organization's integration row for ``provider``, enabled or not."""
    result = await db.execute(
        select(Integration).where(
            Integration.organization_id == organization_id,
            Integration.provider == provider,
        )
    )
    return result.scalar_one_or_none()


async def get_active_integration(
    db: AsyncSession, organization_id: str, registry: ProviderRegistry
) -> Optional[Integration]:
    """
    First enabled integration of the organization backed by a registered provider.

    A missing or disabled integration, or one still waiting for its repository
    after the OAuth connect, yields None: sync is simply off.
    """
    result = await db.execute(
        select(Integration)
        .where(Integration.organization_id == organization_id, Integration.enabled.is_(True))
        .order_by(Integration.id)
        .execution_options(populate_existing=True)
    )
    for integration in result.scalars():
        if integration.provider in registry and integration.has_repository:
            return integration
    return None


def provider_config(integration: Integration) -> ProviderConfig:
    return ProviderConfig(
        access_token=decrypt_token(integration.access_token),
        owner=integration.owner,
        repo=integration.repo,
    )


async def find_integrations_by_repository(
    db: AsyncSession, full_name: str, provider: str = "github"
) -> List[Integration]:
    """
    Every integration connected to ``owner/repo``.

    Several organizations may track the same repository; the caller tells them
    apart by which webhook secret verifies the delivery.
    """
    owner, _, repo = full_name.partition("/")
    if not owner or not repo:
        return []
    result = await db.execute(
        select(Integration)
        .where(
            Integration.provider == provider,
            func.lower(Integration.owner) == owner.lower(),
            func.lower(Integration.repo) == repo.lower(),
        )
        .order_by(Integration.id)
    )
    return list(result.scalars().all())
