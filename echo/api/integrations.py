"""GitHub integration management API routes"""

import logging
from datetime import timedelta
from typing import List
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from echo.api.auth import CurrentUser, get_current_user
from echo.api.deps import get_registry
from echo.config import get_settings
from echo.core.database import get_db
from echo.core.errors import ApiError, Conflict, NotFound, UpstreamError, ValidationFailed
from echo.core.security import (
    create_access_token,
    decode_access_token,
    decrypt_token,
    encrypt_token,
    generate_secret,
)
from echo.integrations.base import ProviderConfig, IssueTrackerError
from echo.integrations.registry import ProviderRegistry
from echo.models import Integration
from echo.models.integration import DEFAULT_TRIGGER_STATUSES
from echo.schemas.integration import (
    IntegrationConnect,
    IntegrationConnected,
    IntegrationResponse,
    IntegrationUpdate,
    ProviderResponse,
    RepositorySummary,
)
from echo.services.integrations import get_integration, provider_config

settings = get_settings()
logger = logging.getLogger("echo.api")
router = APIRouter(prefix="/api/integrations", tags=["integrations"])

PROVIDER = "github"

# NOT NULL columns; an explicit null in a PATCH body leaves them unchanged
REQUIRED_FIELDS = frozenset({"enabled", "auto_sync", "sync_status_changes", "sync_comments", "auto_add_labels"})


def _github(registry: ProviderRegistry):
    provider = registry.get(PROVIDER)
    if provider is None:
        raise NotFound("GitHub provider is not available")
    return provider


async def _check_access(registry: ProviderRegistry, config: ProviderConfig) -> None:
    if not await _github(registry).client(config).validate_token():
        raise ValidationFailed(
            f"Cannot access {config.owner}/{config.repo} with the given token",
            code="INVALID_CREDENTIALS",
        )


async def _get_or_404(db: AsyncSession, organization_id: str) -> Integration:
    integration = await get_integration(db, organization_id, PROVIDER)
    if integration is None:
        raise NotFound("GitHub integration not connected")
    return integration


@router.get("/providers", response_model=List[ProviderResponse])
async def list_providers(
    registry: ProviderRegistry = Depends(get_registry),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List available issue tracker providers and their capabilities"""
    return [
        ProviderResponse(
            type=meta.type,
            name=meta.name,
            description=meta.description,
            capabilities=sorted(c.value for c in meta.capabilities),
        )
        for meta in registry.metadata()
    ]


@router.get("/github", response_model=IntegrationResponse)
async def get_github_integration(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get the organization's GitHub integration"""
    return await _get_or_404(db, current_user.organization_id)


def _connected(integration: Integration) -> IntegrationConnected:
    return IntegrationConnected(
        **IntegrationResponse.model_validate(integration).model_dump(),
        webhook_url=f"{settings.app_url.rstrip('/')}/api/webhooks/github",
        webhook_secret=integration.webhook_secret,
    )


@router.post("/github", response_model=IntegrationConnected, status_code=201)
async def connect_github(
    body: IntegrationConnect,
    response: Response,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Connect a GitHub repository after checking the token can reach it.

    Without an access token the repository is attached to the account already
    connected through OAuth, and the answer is 200 instead of 201.
    """
    existing = await get_integration(db, current_user.organization_id, PROVIDER)
    if body.access_token is None:
        response.status_code = 200
        return await _select_repository(db, registry, existing, body)

    if existing is not None:
        raise Conflict("GitHub integration already connected")

    await _check_access(registry, ProviderConfig(body.access_token, body.owner, body.repo))

    integration = Integration(
        organization_id=current_user.organization_id,
        provider=PROVIDER,
        name=body.name or f"{body.owner}/{body.repo}",
        access_token=encrypt_token(body.access_token),
        owner=body.owner,
        repo=body.repo,
        webhook_secret=generate_secret(),
        auto_sync=body.auto_sync,
        sync_status_changes=body.sync_status_changes,
        sync_comments=body.sync_comments,
        auto_add_labels=body.auto_add_labels,
        trigger_statuses=body.trigger_statuses if body.trigger_statuses is not None else list(DEFAULT_TRIGGER_STATUSES),
        label_mapping=body.label_mapping,
        priority_label_mapping=body.priority_label_mapping,
        status_mapping=body.status_mapping,
        connected_by=current_user.user_id,
    )
    db.add(integration)
    await db.commit()
    await db.refresh(integration)

    logger.info(
        "GitHub integration connected organization_id=%s repo=%s",
        current_user.organization_id,
        integration.repo_full_name,
    )
    return _connected(integration)


async def _select_repository(
    db: AsyncSession,
    registry: ProviderRegistry,
    integration: Integration | None,
    body: IntegrationConnect,
) -> IntegrationConnected:
    if integration is None:
        raise ValidationFailed(
            "GitHub not connected. Connect your GitHub account first.",
            code="NOT_CONNECTED",
        )

    await _check_access(registry, ProviderConfig(decrypt_token(integration.access_token), body.owner, body.repo))

    integration.owner = body.owner
    integration.repo = body.repo
    integration.webhook_secret = integration.webhook_secret or generate_secret()
    for field in body.model_fields_set - {"access_token", "owner", "repo"}:
        value = getattr(body, field)
        if field in REQUIRED_FIELDS and value is None:
            continue
        setattr(integration, field, value)
    if not integration.name:
        integration.name = integration.repo_full_name

    await db.commit()
    await db.refresh(integration)

    logger.info(
        "GitHub repository selected organization_id=%s repo=%s",
        integration.organization_id,
        integration.repo_full_name,
    )
    return _connected(integration)


# ==========================
# OAuth connect
# ==========================

OAUTH_STATE_PURPOSE = "github_oauth"
OAUTH_STATE_TTL = timedelta(minutes=10)
OAUTH_SCOPES = "repo read:user user:email"


def _oauth_callback_url() -> str:
    return f"{settings.app_url.rstrip('/')}/api/integrations/github/callback"


def _settings_redirect(error: str | None = None) -> RedirectResponse:
    params = {"error": error} if error else {"github_connected": "true"}
    return RedirectResponse(f"{settings.app_url.rstrip('/')}/settings/integrations?{urlencode(params)}")


@router.get("/github/oauth")
async def start_github_oauth(current_user: CurrentUser = Depends(get_current_user)):
    """Redirect to GitHub's authorize page; the signed state carries the organization"""
    if not settings.github_client_id:
        raise ApiError("GitHub OAuth not configured", code="OAUTH_NOT_CONFIGURED")

    state = create_access_token(
        {
            "purpose": OAUTH_STATE_PURPOSE,
            "organization_id": current_user.organization_id,
            "user_id": current_user.user_id,
        },
        expires_delta=OAUTH_STATE_TTL,
    )
    params = {
        "client_id": settings.github_client_id,
        "redirect_uri": _oauth_callback_url(),
        "scope": OAUTH_SCOPES,
        "state": state,
    }
    return RedirectResponse(f"{settings.github_oauth_url.rstrip('/')}/login/oauth/authorize?{urlencode(params)}")


@router.get("/github/callback")
async def github_oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Exchange the authorization code for a token and store it encrypted.

    The repository is picked afterwards with POST /github without a token.
    Every outcome redirects back to the integration settings page.
    """
    if error:
        return _settings_redirect(f"GitHub authorization failed: {error_description or error}")
    if not code or not state:
        return _settings_redirect("Missing authorization code or state")

    claims = decode_access_token(state)
    if not claims or claims.get("purpose") != OAUTH_STATE_PURPOSE:
        return _settings_redirect("Authorization request invalid or expired")
    if claims.get("user_id") != current_user.user_id or claims.get("organization_id") != current_user.organization_id:
        return _settings_redirect("Session mismatch, please try again")

    if not settings.github_client_id or not settings.github_client_secret:
        return _settings_redirect("GitHub OAuth not configured")

    provider = _github(registry)
    try:
        access_token = await provider.exchange_oauth_code(code, _oauth_callback_url())
        login = await provider.authenticated_login(access_token)
    except IssueTrackerError as exc:
        logger.warning("GitHub OAuth failed organization_id=%s: %s", current_user.organization_id, exc)
        return _settings_redirect(str(exc))

    integration = await get_integration(db, current_user.organization_id, PROVIDER)
    if integration is None:
        integration = Integration(
            organization_id=current_user.organization_id,
            provider=PROVIDER,
            owner="",
            repo="",
            webhook_secret=generate_secret(),
            trigger_statuses=list(DEFAULT_TRIGGER_STATUSES),
        )
        db.add(integration)
    integration.access_token = encrypt_token(access_token)
    integration.connected_by = current_user.user_id
    await db.commit()

    logger.info("GitHub account connected through OAuth organization_id=%s login=%s", current_user.organization_id, login)
    return _settings_redirect()


@router.patch("/github", response_model=IntegrationResponse)
async def update_github_integration(
    body: IntegrationUpdate,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Update sync settings; credentials are re-checked when the token or repository changes"""
    integration = await _get_or_404(db, current_user.organization_id)
    updates = body.model_dump(exclude_unset=True)
    access_token = updates.pop("access_token", None)

    if access_token or "owner" in updates or "repo" in updates:
        config = provider_config(integration)
        await _check_access(
            registry,
            ProviderConfig(
                access_token=access_token or config.access_token,
                owner=updates.get("owner") or integration.owner,
                repo=updates.get("repo") or integration.repo,
            ),
        )
        if access_token:
            integration.access_token = encrypt_token(access_token)

    for field, value in updates.items():
        if field in REQUIRED_FIELDS and value is None:
            continue
        if field in ("owner", "repo") and not value:
            continue
        setattr(integration, field, value)

    await db.commit()
    await db.refresh(integration)
    logger.info("GitHub integration updated organization_id=%s fields=%s", current_user.organization_id, sorted(updates))
    return integration


@router.delete("/github")
async def disconnect_github(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Disconnect GitHub; linked issues stay on GitHub untouched"""
    integration = await _get_or_404(db, current_user.organization_id)
    await db.delete(integration)
    await db.commit()
    logger.info("GitHub integration disconnected organization_id=%s", current_user.organization_id)
    return {"status": "disconnected"}


@router.get("/github/repos", response_model=List[RepositorySummary])
async def list_github_repositories(
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List repositories the stored token can see"""
    integration = await _get_or_404(db, current_user.organization_id)
    try:
        repos = await _github(registry).client(provider_config(integration)).list_repositories()
    except IssueTrackerError as exc:
        raise UpstreamError("Failed to list GitHub repositories", details={"status": exc.status_code}) from exc

    return [
        RepositorySummary(
            id=repo["id"],
            name=repo["name"],
            full_name=repo["full_name"],
            owner=(repo.get("owner") or {}).get("login", ""),
            private=repo.get("private", False),
            description=repo.get("description"),
            html_url=repo.get("html_url"),
        )
        for repo in repos
    ]
