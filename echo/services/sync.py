"""
Issue sync between Echo feedback and the organization's external tracker.

Per feedback item the linkage moves UNLINKED -> LINKED-OPEN <-> LINKED-CLOSED.
Creation happens once, guarded by a claim on the feedback row; after that
only the open/closed state and the issue text are pushed.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from echo.config import Settings, get_settings
from echo.core.database import utcnow
from echo.integrations import integration_registry
from echo.integrations.base import Capability, ExternalIssue, FeedbackForSync, IssueTrackerError
from echo.integrations.registry import ProviderRegistry
from echo.models import Feedback, Integration, StatusHistory
from echo.services.integrations import get_active_integration, provider_config
from echo.services.mappings import (
    EXTERNAL_CLOSED,
    resolve_external_state,
    resolve_labels,
    resolve_local_status,
    should_trigger_issue_creation,
)

logger = logging.getLogger("echo.sync")

INBOUND_ACTOR = "github"


@dataclass
class StatusChange:
    feedback_id: int
    organization_id: str
    old_status: str
    new_status: str


async def find_linked_feedback(
    db: AsyncSession, organization_id: str, external_issue_id: str
) -> Optional[Feedback]:
    result = await db.execute(
        select(Feedback)
        .where(
            Feedback.organization_id == organization_id,
            Feedback.external_issue_id == external_issue_id,
            Feedback.deleted_at.is_(None),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


class SyncOrchestrator:
    """Decides when feedback is created, updated, closed or reopened in the tracker."""

    def __init__(
        self,
        db: AsyncSession,
        registry: Optional[ProviderRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.registry = registry or integration_registry
        self.settings = settings or get_settings()

    async def _get_feedback(self, feedback_id: int) -> Optional[Feedback]:
        result = await self.db.execute(
            select(Feedback)
            .where(Feedback.feedback_id == feedback_id, Feedback.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _resolve(self, organization_id: str, capability: Capability) -> Optional[Tuple[Integration, object]]:
        integration = await get_active_integration(self.db, organization_id, self.registry)
        if integration is None:
            return None
        provider = self.registry.get(integration.provider)
        if provider is None or not provider.supports(capability):
            return None
        return integration, provider

    def _feedback_for_sync(self, feedback: Feedback) -> FeedbackForSync:
        return FeedbackForSync(
            feedback_id=feedback.feedback_id,
            title=feedback.title,
            description=feedback.description,
            type=feedback.type,
            priority=feedback.priority,
            status=feedback.status,
            url=f"{self.settings.app_url.rstrip('/')}/feedback/{feedback.feedback_id}",
        )

    async def _claim(self, feedback_id: int) -> bool:
        """
        Take the exclusive right to create the issue for this feedback.

        Succeeds only while the row is unlinked and nobody holds a fresh claim.
        """
        now = utcnow()
        stale_before = now - timedelta(seconds=self.settings.sync_claim_timeout_seconds)
        result = await self.db.execute(
            update(Feedback)
            .where(
                Feedback.feedback_id == feedback_id,
                Feedback.external_issue_id.is_(None),
                or_(
                    Feedback.external_sync_claimed_at.is_(None),
                    Feedback.external_sync_claimed_at < stale_before,
                ),
            )
            .values(external_sync_claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def _release_claim(self, feedback_id: int) -> None:
        await self.db.execute(
            update(Feedback)
            .where(Feedback.feedback_id == feedback_id, Feedback.external_issue_id.is_(None))
            .values(external_sync_claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def sync_to_external(self, feedback_id: int) -> Optional[ExternalIssue]:
        """
        Create the tracker issue for a feedback item.

        Returns None without error when the feedback is missing, already linked,
        being linked by another caller, or sync is not configured. Tracker
        failures are re-raised after the claim is released.
        """
        feedback = await self._get_feedback(feedback_id)
        if feedback is None:
            logger.info("Feedback not found feedback_id=%s", feedback_id)
            return None

        if feedback.is_linked:
            logger.info(
                "Feedback already synced feedback_id=%s external_issue_id=%s",
                feedback_id,
                feedback.external_issue_id,
            )
            return None

        resolved = await self._resolve(feedback.organization_id, Capability.ISSUE_SYNC)
        if resolved is None or not resolved[0].auto_sync:
            logger.info("Issue sync not configured or auto-sync disabled feedback_id=%s", feedback_id)
            return None
        integration, provider = resolved
        config = provider_config(integration)

        if not await self._claim(feedback_id):
            logger.info("Issue creation already claimed feedback_id=%s", feedback_id)
            return None

        labels = []
        if integration.auto_add_labels:
            labels = resolve_labels(
                feedback.type,
                feedback.priority,
                integration.label_mapping,
                integration.priority_label_mapping,
            )

        try:
            if labels:
                try:
                    await provider.ensure_labels(config, labels)
                except IssueTrackerError as exc:
                    # The issue is still created; the tracker falls back to default label colors
                    logger.warning("Could not prepare labels feedback_id=%s: %s", feedback_id, exc)
            issue = await provider.create_issue(config, self._feedback_for_sync(feedback), labels)
        except Exception:
            logger.error("Failed to create external issue feedback_id=%s", feedback_id, exc_info=True)
            await self._release_claim(feedback_id)
            raise

        now = utcnow()
        feedback.external_issue_id = issue.id
        feedback.external_issue_number = issue.number
        feedback.external_issue_url = issue.url
        feedback.external_status = issue.state
        feedback.external_synced_at = now
        integration.last_sync_at = now
        await self.db.commit()

        logger.info(
            "Synced feedback to %s feedback_id=%s external_issue_id=%s number=%s url=%s",
            integration.provider,
            feedback_id,
            issue.id,
            issue.number,
            issue.url,
        )
        return issue

    async def push_feedback_update(self, feedback_id: int) -> Optional[ExternalIssue]:
        """Send edited title/description of a linked feedback item to its issue."""
        feedback = await self._get_feedback(feedback_id)
        if feedback is None or not feedback.is_linked or feedback.external_issue_number is None:
            return None

        resolved = await self._resolve(feedback.organization_id, Capability.ISSUE_SYNC)
        if resolved is None or not resolved[0].auto_sync:
            return None
        integration, provider = resolved

        issue = await provider.update_issue(
            provider_config(integration), feedback.external_issue_number, self._feedback_for_sync(feedback)
        )
        feedback.external_synced_at = utcnow()
        await self.db.commit()
        logger.info("Pushed feedback edit feedback_id=%s number=%s", feedback_id, issue.number)
        return issue

    async def handle_status_change(self, feedback_id: int, old_status: str, new_status: str) -> None:
        """
        Propagate a local status change. Never raises: a sync failure must not
        undo or block the status change that triggered it.
        """
        try:
            await self._sync_status_change(feedback_id, old_status, new_status)
        except Exception:
            logger.exception(
                "Failed to sync status change feedback_id=%s old_status=%s new_status=%s",
                feedback_id,
                old_status,
                new_status,
            )

    async def _sync_status_change(self, feedback_id: int, old_status: str, new_status: str) -> None:
        feedback = await self._get_feedback(feedback_id)
        if feedback is None:
            logger.warning("Feedback not found for status change sync feedback_id=%s", feedback_id)
            return

        integration = await get_active_integration(self.db, feedback.organization_id, self.registry)
        if integration is None or not integration.sync_status_changes:
            logger.debug("Status change sync disabled feedback_id=%s", feedback_id)
            return

        # No issue yet: the new status may be the trigger for creating one
        if not feedback.is_linked:
            if should_trigger_issue_creation(new_status, integration.effective_trigger_statuses):
                logger.info("Status triggers issue creation feedback_id=%s status=%s", feedback_id, new_status)
                await self.sync_to_external(feedback_id)
            return

        provider = self.registry.get(integration.provider)
        if provider is None or not provider.supports(Capability.STATUS_SYNC):
            return

        target_state = resolve_external_state(new_status, integration.status_mapping)
        if target_state == feedback.external_status:
            logger.debug("External state unchanged feedback_id=%s state=%s", feedback_id, target_state)
            return

        if feedback.external_issue_number is None:
            logger.warning("Linked feedback has no issue number feedback_id=%s", feedback_id)
            return

        config = provider_config(integration)
        if target_state == EXTERNAL_CLOSED:
            await provider.close_issue(config, feedback.external_issue_number)
        else:
            await provider.reopen_issue(config, feedback.external_issue_number)

        now = utcnow()
        feedback.external_status = target_state
        feedback.external_synced_at = now
        integration.last_sync_at = now
        await self.db.commit()

        logger.info(
            "Synced status change feedback_id=%s old_status=%s new_status=%s external_state=%s",
            feedback_id,
            old_status,
            new_status,
            target_state,
        )

    async def sync_from_external(self, feedback_id: int) -> Optional[StatusChange]:
        """Pull the issue state and map it back onto the local status."""
        feedback = await self._get_feedback(feedback_id)
        if feedback is None or not feedback.is_linked or feedback.external_issue_number is None:
            return None

        resolved = await self._resolve(feedback.organization_id, Capability.STATUS_SYNC)
        if resolved is None:
            return None
        integration, provider = resolved

        issue = await provider.get_issue_state(provider_config(integration), feedback.external_issue_number)
        return await self._reconcile(feedback, issue.state)

    async def apply_external_state(
        self, integration: Integration, external_issue_id: str, state: Optional[str]
    ) -> Optional[StatusChange]:
        """Reconcile an inbound issue state change reported by the tracker's webhook."""
        feedback = await find_linked_feedback(self.db, integration.organization_id, external_issue_id)
        if feedback is None:
            logger.info("No feedback linked to external issue external_issue_id=%s", external_issue_id)
            return None
        return await self._reconcile(feedback, state)

    async def _reconcile(self, feedback: Feedback, state: Optional[str]) -> Optional[StatusChange]:
        new_status = resolve_local_status(state)
        now = utcnow()
        change = None

        if state:
            feedback.external_status = state
            feedback.external_synced_at = now

        if new_status and new_status != feedback.status:
            change = StatusChange(
                feedback_id=feedback.feedback_id,
                organization_id=feedback.organization_id,
                old_status=feedback.status,
                new_status=new_status,
            )
            self.db.add(
                StatusHistory(
                    feedback_id=feedback.feedback_id,
                    old_status=feedback.status,
                    new_status=new_status,
                    changed_by=INBOUND_ACTOR,
                )
            )
            feedback.status = new_status

        await self.db.commit()

        if change:
            logger.info(
                "Status synced from tracker feedback_id=%s old_status=%s new_status=%s",
                change.feedback_id,
                change.old_status,
                change.new_status,
            )
        return change
