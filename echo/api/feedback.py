"""Feedback, status and comment API routes with tracker sync hooks"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from echo.api.auth import CurrentUser, get_current_user
from echo.api.deps import get_dispatcher, get_registry, get_session_factory
from echo.core.database import get_db
from echo.core.errors import NotFound, UpstreamError, ValidationFailed
from echo.integrations.base import IssueTrackerError
from echo.integrations.registry import ProviderRegistry
from echo.models import Comment, Feedback, StatusHistory
from echo.schemas.feedback import (
    CommentCreate,
    CommentImportResponse,
    CommentResponse,
    CommentSyncResponse,
    FeedbackCreate,
    FeedbackResponse,
    FeedbackUpdate,
    IssueSyncResponse,
    StatusChangeResponse,
    StatusUpdate,
)
from echo.services.comments import CommentMirror
from echo.services.sync import SyncOrchestrator
from echo.webhooks import WebhookDispatcher
from echo.webhooks import events

logger = logging.getLogger("echo.api")
router = APIRouter(prefix="/api/feedback", tags=["feedback"])


async def _get_feedback(db: AsyncSession, feedback_id: int, organization_id: str) -> Feedback:
    result = await db.execute(
        select(Feedback)
        .where(
            Feedback.feedback_id == feedback_id,
            Feedback.organization_id == organization_id,
            Feedback.deleted_at.is_(None),
        )
        .execution_options(populate_existing=True)
    )
    feedback = result.scalar_one_or_none()
    if feedback is None:
        raise NotFound("Feedback not found")
    return feedback


# ==========================
# Background jobs
# ==========================

async def sync_status_change(
    session_factory: async_sessionmaker,
    registry: ProviderRegistry,
    feedback_id: int,
    old_status: str,
    new_status: str,
) -> None:
    async with session_factory() as db:
        await SyncOrchestrator(db, registry).handle_status_change(feedback_id, old_status, new_status)


async def push_feedback_edit(session_factory: async_sessionmaker, registry: ProviderRegistry, feedback_id: int) -> None:
    """Send an edited title/description to the linked issue; failures stay in the log"""
    async with session_factory() as db:
        try:
            await SyncOrchestrator(db, registry).push_feedback_update(feedback_id)
        except Exception:
            logger.exception("Failed to push feedback edit to tracker feedback_id=%s", feedback_id)


async def mirror_comment(session_factory: async_sessionmaker, registry: ProviderRegistry, comment_id: int) -> None:
    """Push a new public comment to the tracker; failures never reach the author"""
    async with session_factory() as db:
        try:
            await CommentMirror(db, registry).sync_comment_to_external(comment_id)
        except Exception:
            logger.exception("Failed to sync comment to tracker comment_id=%s", comment_id)


# ==========================
# Feedback
# ==========================

@router.post("", response_model=FeedbackResponse, status_code=201)
async def create_feedback(
    body: FeedbackCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Create feedback and notify webhook subscribers"""
    feedback = Feedback(
        organization_id=current_user.organization_id,
        title=body.title,
        description=body.description,
        type=body.type,
        priority=body.priority,
        status="new",
    )
    db.add(feedback)
    await db.flush()
    db.add(StatusHistory(feedback_id=feedback.feedback_id, new_status="new", changed_by=current_user.user_id))
    await db.commit()
    await db.refresh(feedback)

    logger.info("Feedback created feedback_id=%s organization_id=%s", feedback.feedback_id, feedback.organization_id)
    background_tasks.add_task(
        dispatcher.trigger_webhooks,
        feedback.organization_id,
        events.FEEDBACK_CREATED,
        events.feedback_data(feedback),
    )
    return feedback


@router.get("/{feedback_id}", response_model=FeedbackResponse)
async def get_feedback(
    feedback_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await _get_feedback(db, feedback_id, current_user.organization_id)


@router.put("/{feedback_id}", response_model=FeedbackResponse)
async def update_feedback(
    feedback_id: int,
    body: FeedbackUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Edit feedback; a linked issue gets the new title and description after the response"""
    feedback = await _get_feedback(db, feedback_id, current_user.organization_id)
    updates = {field: value for field, value in body.model_dump(exclude_unset=True).items() if value is not None}
    if not updates:
        return feedback

    for field, value in updates.items():
        setattr(feedback, field, value)
    await db.commit()
    await db.refresh(feedback)

    logger.info("Feedback updated feedback_id=%s fields=%s", feedback_id, sorted(updates))
    if "title" in updates or "description" in updates:
        background_tasks.add_task(push_feedback_edit, session_factory, registry, feedback_id)
    background_tasks.add_task(
        dispatcher.trigger_webhooks,
        feedback.organization_id,
        events.FEEDBACK_UPDATED,
        events.feedback_data(feedback),
    )
    return feedback


@router.patch("/{feedback_id}/status", response_model=StatusChangeResponse)
async def update_status(
    feedback_id: int,
    body: StatusUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Change the status of a feedback item.

    Tracker sync and webhooks run after the response; neither can undo the change.
    """
    feedback = await _get_feedback(db, feedback_id, current_user.organization_id)
    old_status = feedback.status
    if body.status == old_status:
        raise ValidationFailed(f"Feedback is already {old_status}", code="NO_CHANGE")

    feedback.status = body.status
    db.add(
        StatusHistory(
            feedback_id=feedback_id,
            old_status=old_status,
            new_status=body.status,
            changed_by=current_user.user_id,
            comment=body.comment,
        )
    )
    await db.commit()

    logger.info("Feedback status changed feedback_id=%s %s -> %s", feedback_id, old_status, body.status)
    background_tasks.add_task(sync_status_change, session_factory, registry, feedback_id, old_status, body.status)
    background_tasks.add_task(
        dispatcher.trigger_webhooks,
        feedback.organization_id,
        events.FEEDBACK_STATUS_CHANGED,
        events.status_changed_data(feedback_id, old_status, body.status),
    )
    return StatusChangeResponse(feedback_id=feedback_id, old_status=old_status, new_status=body.status)


@router.post("/{feedback_id}/sync-github", response_model=IssueSyncResponse)
async def sync_to_github(
    feedback_id: int,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Create the GitHub issue for this feedback now"""
    await _get_feedback(db, feedback_id, current_user.organization_id)
    try:
        issue = await SyncOrchestrator(db, registry).sync_to_external(feedback_id)
    except IssueTrackerError as exc:
        raise UpstreamError(
            "Failed to create GitHub issue",
            details={"status": exc.status_code},
        ) from exc

    feedback = await _get_feedback(db, feedback_id, current_user.organization_id)
    return IssueSyncResponse(
        synced=issue is not None,
        external_issue_id=feedback.external_issue_id,
        external_issue_number=feedback.external_issue_number,
        external_issue_url=feedback.external_issue_url,
        external_status=feedback.external_status,
    )


@router.post("/{feedback_id}/sync-from-github", response_model=FeedbackResponse)
async def sync_from_github(
    feedback_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Pull the linked issue's state and apply it to the feedback status"""
    await _get_feedback(db, feedback_id, current_user.organization_id)
    try:
        change = await SyncOrchestrator(db, registry).sync_from_external(feedback_id)
    except IssueTrackerError as exc:
        raise UpstreamError(
            "Failed to read GitHub issue",
            details={"status": exc.status_code},
        ) from exc

    if change:
        background_tasks.add_task(
            dispatcher.trigger_webhooks,
            change.organization_id,
            events.FEEDBACK_STATUS_CHANGED,
            events.status_changed_data(change.feedback_id, change.old_status, change.new_status),
        )
    return await _get_feedback(db, feedback_id, current_user.organization_id)


# ==========================
# Comments
# ==========================

@router.get("/{feedback_id}/comments", response_model=List[CommentResponse])
async def list_comments(
    feedback_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    await _get_feedback(db, feedback_id, current_user.organization_id)
    result = await db.execute(
        select(Comment)
        .where(Comment.feedback_id == feedback_id)
        .order_by(Comment.created_at, Comment.comment_id)
    )
    return result.scalars().all()


@router.post("/{feedback_id}/comments", response_model=CommentResponse, status_code=201)
async def create_comment(
    feedback_id: int,
    body: CommentCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Add a comment; public comments are mirrored to the linked issue"""
    feedback = await _get_feedback(db, feedback_id, current_user.organization_id)
    comment = Comment(
        feedback_id=feedback_id,
        user_id=current_user.user_id,
        author_name=body.author_name or current_user.user_id,
        content=body.content,
        is_internal=body.is_internal,
    )
    db.add(comment)
    await db.commit()
    await db.refresh(comment)

    if not comment.is_internal:
        background_tasks.add_task(mirror_comment, session_factory, registry, comment.comment_id)
    background_tasks.add_task(
        dispatcher.trigger_webhooks,
        feedback.organization_id,
        events.COMMENT_CREATED,
        events.comment_data(comment),
    )
    return comment


@router.post("/{feedback_id}/comments/sync", response_model=CommentSyncResponse)
async def sync_comments(
    feedback_id: int,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Push every unsynced public comment to the linked issue, oldest first"""
    await _get_feedback(db, feedback_id, current_user.organization_id)
    try:
        synced = await CommentMirror(db, registry).sync_all_pending_comments(feedback_id)
    except IssueTrackerError as exc:
        raise UpstreamError(
            "Failed to sync comments to GitHub",
            details={"status": exc.status_code},
        ) from exc
    return CommentSyncResponse(synced=synced)


@router.post("/{feedback_id}/comments/import", response_model=CommentImportResponse)
async def import_comments(
    feedback_id: int,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Pull comments from the linked issue that no webhook delivered"""
    await _get_feedback(db, feedback_id, current_user.organization_id)
    try:
        imported = await CommentMirror(db, registry).import_external_comments(feedback_id)
    except IssueTrackerError as exc:
        raise UpstreamError(
            "Failed to import comments from GitHub",
            details={"status": exc.status_code},
        ) from exc
    return CommentImportResponse(imported=imported)
