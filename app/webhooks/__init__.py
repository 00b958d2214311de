"""Provider webhook intake: authenticate, log, then reconcile."""

from app.webhooks.models import WebhookPayload

__all__ = ["WebhookPayload"]
