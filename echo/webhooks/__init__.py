"""Outbound webhooks to an organization's own subscribers"""

from echo.webhooks.delivery import WebhookDispatcher, next_retry_at, retry_delay
from echo.webhooks.signing import sign_payload, verify_signature

__all__ = ["WebhookDispatcher", "next_retry_at", "retry_delay", "sign_payload", "verify_signature"]
