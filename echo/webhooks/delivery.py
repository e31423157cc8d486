"""
Outbound webhook delivery with bounded retries.

Event lifecycle:
    pending -> sending -> delivered
    sending -> pending (retry_count + 1, next_retry_at) ... -> failed

Every failed attempt, whether an exception or a non-2xx response, goes
through _record_failure so attempt accounting lives in one place.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from echo.config import Settings, get_settings
from echo.core.database import async_session, utcnow
from echo.models import Webhook, WebhookEvent
from echo.models.webhook import EVENT_DELIVERED, EVENT_FAILED, EVENT_PENDING, EVENT_SENDING
from echo.webhooks.events import build_payload
from echo.webhooks.signing import serialize_payload, sign_body

logger = logging.getLogger("echo.webhooks")

RETRY_DELAYS = (60, 300, 900)  # 1min, 5min, 15min

# Event ids being retried by this worker process
_PROCESSING: Set[int] = set()


def retry_delay(retry_count: int) -> int:
    """Seconds to wait after the attempt numbered ``retry_count`` (0-based) failed."""
    return RETRY_DELAYS[min(max(retry_count, 0), len(RETRY_DELAYS) - 1)]


def next_retry_at(retry_count: int, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(seconds=retry_delay(retry_count))


@dataclass
class SweepResult:
    attempted: int = 0
    delivered: int = 0
    retrying: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0


class WebhookDispatcher:
    """Sends signed events to subscribers and retries the ones that failed."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        processing: Optional[Set[int]] = None,
    ):
        self.session_factory = session_factory or async_session
        self.settings = settings or get_settings()
        self._transport = transport
        self._processing = _PROCESSING if processing is None else processing

    def _truncate(self, body: Optional[str]) -> Optional[str]:
        if body is None:
            return None
        return body[: self.settings.webhook_response_body_limit]

    async def send_webhook(self, webhook_id: int, event_type: str, payload: Dict[str, Any]) -> Optional[int]:
        """
        Record and attempt one event for one subscription.

        Returns the event id, or None when the subscription is missing, disabled
        or not subscribed to ``event_type``.
        """
        async with self.session_factory() as db:
            webhook = await db.get(Webhook, webhook_id)
            if webhook is None or not webhook.enabled:
                logger.info("Webhook not found or disabled webhook_id=%s", webhook_id)
                return None

            if not webhook.is_subscribed(event_type):
                logger.info("Webhook not subscribed to event webhook_id=%s event=%s", webhook_id, event_type)
                return None

            event = WebhookEvent(
                webhook_id=webhook_id,
                event_type=event_type,
                payload=payload,
                status=EVENT_SENDING,
                retry_count=0,
                max_retries=self.settings.webhook_max_retries,
            )
            db.add(event)
            await db.commit()

            await self._deliver(db, event, webhook)
            return event.event_id

    async def trigger_webhooks(self, organization_id: str, event_type: str, data: Dict[str, Any]) -> int:
        """Fan an event out to every enabled subscription of the organization."""
        payload = build_payload(organization_id, event_type, data)

        async with self.session_factory() as db:
            result = await db.execute(
                select(Webhook).where(
                    Webhook.organization_id == organization_id,
                    Webhook.enabled.is_(True),
                )
            )
            webhook_ids = [w.webhook_id for w in result.scalars() if w.is_subscribed(event_type)]

        results = await asyncio.gather(
            *(self.send_webhook(webhook_id, event_type, payload) for webhook_id in webhook_ids),
            return_exceptions=True,
        )
        for webhook_id, outcome in zip(webhook_ids, results):
            if isinstance(outcome, Exception):
                logger.error(
                    "Failed to queue webhook webhook_id=%s event=%s",
                    webhook_id,
                    event_type,
                    exc_info=outcome,
                )

        logger.info(
            "Webhooks triggered organization_id=%s event=%s count=%s",
            organization_id,
            event_type,
            len(webhook_ids),
        )
        return len(webhook_ids)

    async def _deliver(self, db: AsyncSession, event: WebhookEvent, webhook: Webhook) -> bool:
        body = serialize_payload(event.payload)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.webhook_user_agent,
            "X-Echo-Webhook-ID": str(event.event_id),
            "X-Echo-Webhook-Event": event.event_type,
            "X-Echo-Webhook-Signature": sign_body(body, webhook.secret),
            "X-Echo-Webhook-Timestamp": str(int(time.time() * 1000)),
        }

        try:
            async with httpx.AsyncClient(timeout=self.settings.webhook_timeout, transport=self._transport) as client:
                response = await client.post(webhook.url, content=body, headers=headers)
        except Exception as exc:
            logger.error(
                "Webhook delivery error webhook_id=%s event_id=%s: %s",
                webhook.webhook_id,
                event.event_id,
                exc,
            )
            await self._record_failure(db, event, None, f"{type(exc).__name__}: {exc}")
            return False

        if not response.is_success:
            logger.warning(
                "Webhook delivery rejected webhook_id=%s event_id=%s status=%s",
                webhook.webhook_id,
                event.event_id,
                response.status_code,
            )
            await self._record_failure(db, event, response.status_code, response.text)
            return False

        event.status = EVENT_DELIVERED
        event.response_status = response.status_code
        event.response_body = self._truncate(response.text)
        event.delivered_at = utcnow()
        event.next_retry_at = None
        await db.commit()

        logger.info(
            "Webhook delivered webhook_id=%s event_id=%s status=%s",
            webhook.webhook_id,
            event.event_id,
            response.status_code,
        )
        return True

    async def _record_failure(
        self,
        db: AsyncSession,
        event: WebhookEvent,
        response_status: Optional[int],
        response_body: Optional[str],
    ) -> None:
        attempt = event.retry_count
        event.retry_count = attempt + 1
        event.response_status = response_status
        event.response_body = self._truncate(response_body)

        if event.retry_count >= event.max_retries:
            event.status = EVENT_FAILED
            event.next_retry_at = None
            logger.warning(
                "Webhook failed after max retries event_id=%s retries=%s",
                event.event_id,
                event.retry_count,
            )
        else:
            event.status = EVENT_PENDING
            event.next_retry_at = next_retry_at(attempt)

        await db.commit()

    async def process_failed_webhooks(self) -> SweepResult:
        """
        One retry sweep over due pending events, bounded by the batch size.

        Safe to run concurrently: the in-process set skips events this worker is
        already retrying, and the pending -> sending claim keeps other workers
        from delivering the same event.
        """
        sweep = SweepResult()
        async with self.session_factory() as db:
            result = await db.execute(
                select(WebhookEvent.event_id)
                .where(
                    WebhookEvent.status == EVENT_PENDING,
                    WebhookEvent.next_retry_at <= utcnow(),
                    WebhookEvent.retry_count < WebhookEvent.max_retries,
                )
                .order_by(WebhookEvent.next_retry_at, WebhookEvent.event_id)
                .limit(self.settings.webhook_retry_batch_size)
            )
            due = list(result.scalars())

        for event_id in due:
            if event_id in self._processing:
                sweep.skipped += 1
                continue

            self._processing.add(event_id)
            try:
                outcome = await self._retry_event(event_id)
            except Exception:
                logger.exception("Failed to retry webhook event_id=%s", event_id)
                sweep.errors += 1
                continue
            finally:
                self._processing.discard(event_id)

            if outcome == "skipped":
                sweep.skipped += 1
                continue
            sweep.attempted += 1
            if outcome == "delivered":
                sweep.delivered += 1
            elif outcome == "retrying":
                sweep.retrying += 1
            else:
                sweep.failed += 1

        if due:
            logger.info(
                "Webhook retry sweep due=%s delivered=%s retrying=%s failed=%s skipped=%s",
                len(due),
                sweep.delivered,
                sweep.retrying,
                sweep.failed,
                sweep.skipped,
            )
        return sweep

    async def _retry_event(self, event_id: int) -> str:
        async with self.session_factory() as db:
            claim = await db.execute(
                update(WebhookEvent)
                .where(
                    WebhookEvent.event_id == event_id,
                    WebhookEvent.status == EVENT_PENDING,
                    WebhookEvent.retry_count < WebhookEvent.max_retries,
                )
                .values(status=EVENT_SENDING)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if claim.rowcount != 1:
                return "skipped"

            event = await db.get(WebhookEvent, event_id)
            webhook = await db.get(Webhook, event.webhook_id)

            if webhook is None or not webhook.enabled:
                event.status = EVENT_FAILED
                event.next_retry_at = None
                await db.commit()
                logger.warning("Webhook gone or disabled, failing event event_id=%s", event_id)
                return "failed"

            logger.info("Retrying webhook event_id=%s retry_count=%s", event_id, event.retry_count)
            if await self._deliver(db, event, webhook):
                return "delivered"
            return "failed" if event.status == EVENT_FAILED else "retrying"
