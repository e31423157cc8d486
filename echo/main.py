import json
import logging
from typing import Any, Dict

from fastapi import BackgroundTasks, Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from echo import __version__
from echo.api import feedback, integrations, webhooks
from echo.api.deps import get_dispatcher, get_registry
from echo.config import get_settings
from echo.core.database import get_db
from echo.core.errors import Unauthorized, ValidationFailed, register_exception_handlers
from echo.core.log import setup_logging
from echo.integrations.base import Capability, InboundEvent
from echo.integrations.registry import ProviderRegistry
from echo.models import Integration
from echo.services.comments import CommentMirror
from echo.services.integrations import find_integrations_by_repository
from echo.services.sync import SyncOrchestrator, find_linked_feedback
from echo.startup import shutdown_tasks, startup_tasks
from echo.webhooks import WebhookDispatcher
from echo.webhooks import events

# ==========================
# Settings & Logging
# ==========================

settings = get_settings()

setup_logging(settings.log_level)

logger = logging.getLogger("echo")

# FastAPI app
app = FastAPI(title=settings.app_name, version=__version__)

register_exception_handlers(app)

# Include API routers
app.include_router(integrations.router)
app.include_router(feedback.router)
app.include_router(webhooks.router)
app.include_router(webhooks.internal_router)


# ==========================
# Lifecycle Events
# ==========================

@app.on_event("startup")
async def startup_event():
    """Initialize database and run startup tasks"""
    await startup_tasks()
    logger.info("Application started")


@app.on_event("shutdown")
async def shutdown_event():
    """Close database connections on shutdown"""
    await shutdown_tasks()
    logger.info("Application shutdown")


# ==========================
# Inbound GitHub events
# ==========================

async def handle_issue_event(
    db: AsyncSession,
    registry: ProviderRegistry,
    dispatcher: WebhookDispatcher,
    background_tasks: BackgroundTasks,
    integration: Integration,
    event: InboundEvent,
) -> Dict[str, Any]:
    if not integration.sync_status_changes:
        return {"msg": "status sync disabled"}

    change = await SyncOrchestrator(db, registry).apply_external_state(integration, event.issue_id, event.state)
    if change is None:
        return {"msg": "no status change"}

    background_tasks.add_task(
        dispatcher.trigger_webhooks,
        change.organization_id,
        events.FEEDBACK_STATUS_CHANGED,
        events.status_changed_data(change.feedback_id, change.old_status, change.new_status),
    )
    return {"msg": "status synced", "feedback_id": change.feedback_id, "status": change.new_status}


async def handle_comment_event(
    db: AsyncSession,
    registry: ProviderRegistry,
    integration: Integration,
    event: InboundEvent,
) -> Dict[str, Any]:
    if not integration.sync_comments or event.comment is None:
        return {"msg": "comment sync disabled"}

    feedback_item = await find_linked_feedback(db, integration.organization_id, event.issue_id)
    if feedback_item is None:
        return {"msg": "issue not linked"}

    comment = await CommentMirror(db, registry).create_from_external_event(
        feedback_item.feedback_id,
        event.comment.id,
        event.comment.author,
        event.comment.body,
        event.comment.url,
    )
    if comment is None:
        return {"msg": "issue not linked"}
    return {"msg": "comment synced", "comment_id": comment.comment_id}


# ==========================
# Routes
# ==========================

@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@app.post("/api/webhooks/github")
async def github_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_github_event: str = Header(None, alias="X-GitHub-Event"),
    x_hub_signature_256: str = Header(None, alias="X-Hub-Signature-256"),
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    if not x_hub_signature_256 or not x_github_event:
        logger.warning("GitHub webhook without signature or event header")
        raise Unauthorized("Missing signature or event header", code="MISSING_HEADERS")

    raw_body = await request.body()

    try:
        payload: Dict[str, Any] = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Invalid JSON in GitHub webhook")
        raise ValidationFailed("Invalid JSON", code="INVALID_JSON")

    logger.info("GitHub webhook received event=%s action=%s", x_github_event, payload.get("action"))

    provider = registry.get("github")
    if provider is None or not provider.supports(Capability.WEBHOOK):
        return JSONResponse({"msg": "github webhooks not supported"})

    # 1) Find the integration whose secret signed this delivery
    repo_full_name = (payload.get("repository") or {}).get("full_name")
    if not repo_full_name:
        return JSONResponse({"msg": "no repository in payload"})

    candidates = await find_integrations_by_repository(db, repo_full_name)
    if not candidates:
        logger.info("Repository %s not connected, skipping", repo_full_name)
        return JSONResponse({"msg": "repository not connected"})

    integration = next(
        (c for c in candidates if provider.verify_webhook(raw_body, x_hub_signature_256, c.webhook_secret)),
        None,
    )
    if integration is None:
        logger.warning("Invalid GitHub webhook signature repo=%s candidates=%s", repo_full_name, len(candidates))
        raise Unauthorized("Invalid signature", code="INVALID_SIGNATURE")

    # 2) Ping
    if x_github_event == "ping":
        return JSONResponse({"msg": "pong"})

    if not integration.enabled:
        return JSONResponse({"msg": "integration disabled"})

    # 3) Issues and issue comments
    event = provider.parse_webhook(x_github_event, payload)
    if event is None:
        logger.info("Unhandled event: %s", x_github_event)
        return JSONResponse({"msg": f"unhandled event {x_github_event}"})

    if event.kind in ("issue_closed", "issue_reopened"):
        result = await handle_issue_event(db, registry, dispatcher, background_tasks, integration, event)
    elif event.kind == "comment_created":
        result = await handle_comment_event(db, registry, integration, event)
    else:
        result = {"msg": f"ignored {event.kind}"}

    logger.info("GitHub webhook handled repo=%s issue=%s: %s", repo_full_name, event.issue_number, result["msg"])
    return JSONResponse(result)
