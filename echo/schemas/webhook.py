"""Webhook subscription schemas for API validation"""

from datetime import datetime
from typing import Any, Dict, List

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator

from echo.webhooks.events import WEBHOOK_EVENTS


def _check_events(events: List[str] | None) -> List[str] | None:
    if events is None:
        return events
    if not events:
        raise ValueError("At least one event type is required")
    unknown = sorted(set(events) - WEBHOOK_EVENTS)
    if unknown:
        raise ValueError(f"Unknown event types: {', '.join(unknown)}")
    return list(dict.fromkeys(events))


class WebhookCreate(BaseModel):
    """Schema for creating a webhook subscription"""
    name: str = Field(min_length=1, max_length=255)
    url: AnyHttpUrl
    events: List[str]
    enabled: bool = True

    @field_validator("events")
    @classmethod
    def validate_events(cls, events):
        return _check_events(events)


class WebhookUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    url: AnyHttpUrl | None = None
    events: List[str] | None = None
    enabled: bool | None = None

    @field_validator("events")
    @classmethod
    def validate_events(cls, events):
        return _check_events(events)


class WebhookResponse(BaseModel):
    """Schema for webhook response; the secret is only returned at creation"""
    webhook_id: int
    organization_id: str
    name: str
    url: str
    events: List[str]
    enabled: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WebhookCreated(WebhookResponse):
    secret: str


class WebhookEventResponse(BaseModel):
    event_id: int
    webhook_id: int
    event_type: str
    payload: Dict[str, Any]
    status: str
    response_status: int | None = None
    response_body: str | None = None
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class RetrySweepResponse(BaseModel):
    attempted: int
    delivered: int
    retrying: int
    failed: int
    skipped: int
    errors: int
