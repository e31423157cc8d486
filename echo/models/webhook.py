"""Outbound webhook subscriptions and their delivery events"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from echo.core.database import Base, utcnow

EVENT_PENDING = "pending"
EVENT_SENDING = "sending"
EVENT_DELIVERED = "delivered"
EVENT_FAILED = "failed"


class Webhook(Base):
    """An organization's subscriber endpoint"""

    __tablename__ = "webhooks"

    webhook_id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(2000), nullable=False)
    secret = Column(String(255))
    events = Column(JSON, nullable=False, default=list)  # ["feedback.created", ...]
    enabled = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def is_subscribed(self, event_type: str) -> bool:
        return event_type in (self.events or [])

    def __repr__(self):
        return f"<Webhook(webhook_id={self.webhook_id}, url={self.url}, enabled={self.enabled})>"


class WebhookEvent(Base):
    """One event queued for one subscriber, with its delivery state"""

    __tablename__ = "webhook_events"

    event_id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(
        Integer, ForeignKey("webhooks.webhook_id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)

    # pending -> sending -> delivered | pending (retry) | failed
    status = Column(String(20), nullable=False, default=EVENT_PENDING, index=True)
    response_status = Column(Integer)
    response_body = Column(Text)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime, index=True)
    delivered_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<WebhookEvent(event_id={self.event_id}, status={self.status}, retry_count={self.retry_count})>"
