"""Database models for Echo"""

from echo.models.feedback import Feedback, StatusHistory
from echo.models.comment import Comment
from echo.models.integration import Integration
from echo.models.webhook import Webhook, WebhookEvent

__all__ = ["Feedback", "StatusHistory", "Comment", "Integration", "Webhook", "WebhookEvent"]
