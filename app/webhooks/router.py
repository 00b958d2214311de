"""FastAPI router for provider webhook deliveries."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse

from app.core.config import Settings, get_settings
from app.db.unit_of_work import UnitOfWork
from app.webhooks.models import StuckDelivery
from app.webhooks.receiver import (
    WebhookAuthenticationError,
    WebhookNotConfiguredError,
    WebhookProcessingError,
    WebhookReceiver,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_webhook_receiver(settings: Settings = Depends(get_settings)) -> WebhookReceiver:
    return WebhookReceiver(secret=settings.PAYMENT_WEBHOOK_SECRET)


@router.post("/payments")
async def receive_payment_webhook(
    payload: Dict[str, Any],
    x_webhook_secret: Optional[str] = Header(default=None),
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    """
    Receive a payment status delivery.

    Answers 200 once the delivery is logged, whether or not it changed any
    state. Answers 500 when reconciliation fails so the provider redelivers.
    """
    try:
        result = await receiver.receive(x_webhook_secret, payload)
    except WebhookNotConfiguredError:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook not configured"},
        )
    except WebhookAuthenticationError:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized"},
        )
    except WebhookProcessingError as e:
        logger.error(f"Webhook delivery {e.log_id} failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "details": str(e)},
        )

    return {
        "success": True,
        "message": "Webhook processed",
        "log_id": result.log_id,
        "operation_id": result.operation_id,
        "processed": result.processed,
        "status": result.status,
    }


@router.get("/stuck", response_model=List[StuckDelivery])
async def list_stuck_deliveries(
    older_than_minutes: Optional[int] = Query(default=None, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    settings: Settings = Depends(get_settings),
):
    """List deliveries still unprocessed after the stuck threshold."""
    threshold = (
        older_than_minutes
        if older_than_minutes is not None
        else settings.WEBHOOK_STUCK_AFTER_MINUTES
    )
    try:
        async with UnitOfWork() as uow:
            rows = await uow.webhook_logs.get_stuck(threshold, limit=limit)
    except Exception as e:
        logger.error(f"Stuck delivery scan failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stuck delivery scan failed",
        )

    if rows:
        logger.warning(f"{len(rows)} webhook deliveries unprocessed for over {threshold} minutes")

    return [
        StuckDelivery(
            id=row.id,
            event_type=row.event_type,
            operation_id=row.operation_id,
            error=row.error,
            received_at=row.received_at.isoformat(),
        )
        for row in rows
    ]
