"""Pydantic schemas for API validation"""

from echo.schemas.feedback import (
    CommentCreate,
    CommentResponse,
    FeedbackCreate,
    FeedbackResponse,
    StatusUpdate,
)
from echo.schemas.integration import IntegrationConnect, IntegrationResponse, IntegrationUpdate
from echo.schemas.webhook import WebhookCreate, WebhookResponse, WebhookUpdate

__all__ = [
    "CommentCreate",
    "CommentResponse",
    "FeedbackCreate",
    "FeedbackResponse",
    "StatusUpdate",
    "IntegrationConnect",
    "IntegrationResponse",
    "IntegrationUpdate",
    "WebhookCreate",
    "WebhookResponse",
    "WebhookUpdate",
]
