"""Webhook subscription management and the retry trigger"""

import logging
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from echo.api.auth import CurrentUser, get_current_user, require_internal_token
from echo.api.deps import get_dispatcher
from echo.core.database import get_db
from echo.core.errors import NotFound
from echo.core.security import generate_secret
from echo.models import Webhook, WebhookEvent
from echo.schemas.webhook import (
    RetrySweepResponse,
    WebhookCreate,
    WebhookCreated,
    WebhookEventResponse,
    WebhookResponse,
    WebhookUpdate,
)
from echo.webhooks import WebhookDispatcher

logger = logging.getLogger("echo.api")
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
internal_router = APIRouter(prefix="/api/internal", tags=["internal"])


async def _get_webhook(db: AsyncSession, webhook_id: int, organization_id: str) -> Webhook:
    result = await db.execute(
        select(Webhook).where(
            Webhook.webhook_id == webhook_id,
            Webhook.organization_id == organization_id,
        )
    )
    webhook = result.scalar_one_or_none()
    if webhook is None:
        raise NotFound("Webhook not found")
    return webhook


@router.get("", response_model=List[WebhookResponse])
async def list_webhooks(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        select(Webhook)
        .where(Webhook.organization_id == current_user.organization_id)
        .order_by(Webhook.webhook_id)
    )
    return result.scalars().all()


@router.post("", response_model=WebhookCreated, status_code=201)
async def create_webhook(
    body: WebhookCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Create a subscription; the signing secret is returned only here"""
    webhook = Webhook(
        organization_id=current_user.organization_id,
        name=body.name,
        url=str(body.url),
        secret=generate_secret(),
        events=body.events,
        enabled=body.enabled,
    )
    db.add(webhook)
    await db.commit()
    await db.refresh(webhook)

    logger.info("Webhook created webhook_id=%s organization_id=%s", webhook.webhook_id, webhook.organization_id)
    return webhook


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: int,
    body: WebhookUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    webhook = await _get_webhook(db, webhook_id, current_user.organization_id)
    updates = body.model_dump(exclude_unset=True)
    for field, value in updates.items():
        if value is None:
            continue
        setattr(webhook, field, str(value) if field == "url" else value)

    await db.commit()
    await db.refresh(webhook)
    return webhook


@router.delete("/{webhook_id}")
async def delete_webhook(
    webhook_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Delete a subscription together with its delivery history"""
    webhook = await _get_webhook(db, webhook_id, current_user.organization_id)
    await db.delete(webhook)
    await db.commit()
    logger.info("Webhook deleted webhook_id=%s", webhook_id)
    return {"status": "deleted"}


@router.get("/{webhook_id}/events", response_model=List[WebhookEventResponse])
async def list_webhook_events(
    webhook_id: int,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Recent delivery attempts, newest first"""
    await _get_webhook(db, webhook_id, current_user.organization_id)
    result = await db.execute(
        select(WebhookEvent)
        .where(WebhookEvent.webhook_id == webhook_id)
        .order_by(WebhookEvent.event_id.desc())
        .limit(limit)
    )
    return result.scalars().all()


@internal_router.post(
    "/webhooks/process-retries",
    response_model=RetrySweepResponse,
    dependencies=[Depends(require_internal_token)],
)
async def process_webhook_retries(dispatcher: WebhookDispatcher = Depends(get_dispatcher)):
    """Run one retry sweep; called by the scheduler"""
    sweep = await dispatcher.process_failed_webhooks()
    return RetrySweepResponse(**asdict(sweep))
