"""Mirrors feedback comments to and from the external tracker"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from echo.core.database import utcnow
from echo.integrations import integration_registry
from echo.integrations.base import Capability, CommentForSync
from echo.integrations.registry import ProviderRegistry
from echo.models import Comment, Feedback
from echo.services.integrations import get_active_integration, provider_config

logger = logging.getLogger("echo.comments")


class CommentMirror:
    """
    Outbound: local public comments become tracker comments, at most once.
    Inbound: tracker comments become public local comments, idempotent on the
    tracker's comment id.
    """

    def __init__(self, db: AsyncSession, registry: Optional[ProviderRegistry] = None):
        self.db = db
        self.registry = registry or integration_registry

    async def _find_by_external_id(self, feedback_id: int, external_comment_id: str) -> Optional[Comment]:
        result = await self.db.execute(
            select(Comment).where(
                Comment.feedback_id == feedback_id,
                Comment.external_comment_id == external_comment_id,
            )
        )
        return result.scalar_one_or_none()

    async def sync_comment_to_external(self, comment_id: int) -> bool:
        """Post one comment to the linked issue. Returns True when a tracker call was made."""
        comment = await self.db.get(Comment, comment_id, populate_existing=True)
        if comment is None:
            logger.info("Comment not found comment_id=%s", comment_id)
            return False

        # The external id is the only idempotency guard
        if comment.external_comment_id:
            return False
        if comment.synced_from_external or comment.is_internal:
            return False

        feedback = await self.db.get(Feedback, comment.feedback_id, populate_existing=True)
        if feedback is None or not feedback.is_linked or feedback.external_issue_number is None:
            return False

        integration = await get_active_integration(self.db, feedback.organization_id, self.registry)
        if integration is None or not integration.sync_comments:
            logger.debug("Comment sync disabled comment_id=%s", comment_id)
            return False

        provider = self.registry.get(integration.provider)
        if provider is None or not provider.supports(Capability.COMMENT_SYNC):
            return False

        external = await provider.create_comment(
            provider_config(integration),
            feedback.external_issue_number,
            CommentForSync(comment_id=comment.comment_id, content=comment.content, author_name=comment.author_name),
        )

        comment.external_comment_id = external.id
        comment.external_comment_url = external.url
        comment.external_synced_at = utcnow()
        await self.db.commit()

        logger.info(
            "Synced comment to tracker comment_id=%s feedback_id=%s external_comment_id=%s",
            comment_id,
            feedback.feedback_id,
            external.id,
        )
        return True

    async def create_from_external_event(
        self,
        feedback_id: int,
        external_comment_id: str,
        author_handle: str,
        content: str,
        url: Optional[str] = None,
    ) -> Optional[Comment]:
        """Insert a tracker comment locally unless it is already known."""
        existing = await self._find_by_external_id(feedback_id, external_comment_id)
        if existing is not None:
            return existing

        if await self.db.get(Feedback, feedback_id) is None:
            logger.info("Feedback not found for inbound comment feedback_id=%s", feedback_id)
            return None

        comment = Comment(
            feedback_id=feedback_id,
            author_name=author_handle,
            content=content,
            is_internal=False,
            external_comment_id=external_comment_id,
            external_comment_url=url,
            external_synced_at=utcnow(),
            synced_from_external=True,
        )
        self.db.add(comment)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent delivery of the same event won the insert
            await self.db.rollback()
            return await self._find_by_external_id(feedback_id, external_comment_id)

        logger.info(
            "Comment synced from tracker feedback_id=%s external_comment_id=%s author=%s",
            feedback_id,
            external_comment_id,
            author_handle,
        )
        return comment

    async def sync_all_pending_comments(self, feedback_id: int) -> int:
        """
        Push every unsynced local public comment, oldest first, one at a time.

        Stops at the first tracker failure so comments never appear out of order.
        """
        result = await self.db.execute(
            select(Comment.comment_id)
            .where(
                Comment.feedback_id == feedback_id,
                Comment.external_comment_id.is_(None),
                Comment.synced_from_external.is_(False),
                Comment.is_internal.is_(False),
            )
            .order_by(Comment.created_at, Comment.comment_id)
        )
        pending: List[int] = list(result.scalars())

        synced = 0
        for comment_id in pending:
            if await self.sync_comment_to_external(comment_id):
                synced += 1
        return synced

    async def import_external_comments(self, feedback_id: int) -> int:
        """Pull tracker comments that never reached Echo (e.g. missed webhooks)."""
        feedback = await self.db.get(Feedback, feedback_id, populate_existing=True)
        if feedback is None or not feedback.is_linked or feedback.external_issue_number is None:
            return 0

        integration = await get_active_integration(self.db, feedback.organization_id, self.registry)
        if integration is None or not integration.sync_comments:
            return 0
        provider = self.registry.get(integration.provider)
        if provider is None or not provider.supports(Capability.COMMENT_SYNC):
            return 0

        imported = 0
        for external in await provider.list_comments(provider_config(integration), feedback.external_issue_number):
            if await self._find_by_external_id(feedback_id, external.id) is not None:
                continue
            if await self.create_from_external_event(feedback_id, external.id, external.author, external.body, external.url):
                imported += 1
        return imported
