"""
Payment webhook receiver.

Every delivery is authenticated against the shared secret, written to the
webhook log, and only then reconciled. The log row is marked processed in the
same transaction as the reconciliation, so a row left unprocessed always
means the delivery did not take effect.
"""

import hmac
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.unit_of_work import UnitOfWork
from app.operations.reconciler import Reconciler
from app.webhooks.models import WebhookPayload, WebhookResult

logger = structlog.get_logger()


class WebhookError(Exception):
    """Base exception for webhook intake."""

    pass


class WebhookNotConfiguredError(WebhookError):
    """Raised for every delivery while no shared secret is configured."""

    pass


class WebhookAuthenticationError(WebhookError):
    """Raised when the presented secret is missing or wrong."""

    pass


class WebhookProcessingError(WebhookError):
    """Raised when reconciliation fails; the delivery stays unprocessed."""

    def __init__(self, log_id: int, message: str):
        super().__init__(message)
        self.log_id = log_id


class WebhookReceiver:
    """Authenticate, log and reconcile provider deliveries."""

    def __init__(
        self,
        secret: Optional[str],
        reconciler: Optional[Reconciler] = None,
        session: Optional[AsyncSession] = None,
    ):
        """
        Args:
            secret: Expected shared secret; None refuses every delivery
            reconciler: Reconciler (defaults to one sharing `session`)
            session: Optional database session for testing
        """
        self.secret = secret
        self.reconciler = reconciler or Reconciler(session=session)
        self._session = session

    def authenticate(self, presented_secret: Optional[str]) -> None:
        """
        Raises:
            WebhookNotConfiguredError: If no secret is configured
            WebhookAuthenticationError: If the presented secret does not match
        """
        if not self.secret:
            logger.critical(
                "webhook.not_configured",
                detail="shared secret is not set, rejecting all deliveries",
            )
            raise WebhookNotConfiguredError("Webhook not configured")

        if not presented_secret or not hmac.compare_digest(
            presented_secret.encode("utf-8"), self.secret.encode("utf-8")
        ):
            logger.warning("webhook.unauthorized", secret_present=bool(presented_secret))
            raise WebhookAuthenticationError("Unauthorized")

    async def receive(
        self, presented_secret: Optional[str], payload: Dict[str, Any]
    ) -> WebhookResult:
        """
        Handle one delivery.

        Returns:
            Outcome; `processed` is False when the delivery could not be
            matched to an operation (nothing was changed)

        Raises:
            WebhookNotConfiguredError: No secret configured (nothing logged)
            WebhookAuthenticationError: Bad secret (nothing logged)
            WebhookProcessingError: Reconciliation failed after logging
        """
        self.authenticate(presented_secret)

        raw_operation_id = payload.get("operationId") or payload.get("uniqueId")
        raw_event = payload.get("event") or payload.get("eventType") or payload.get("status")

        async with UnitOfWork(session=self._session) as uow:
            log = await uow.webhook_logs.record_delivery(
                payload,
                event_type=str(raw_event) if raw_event is not None else None,
                operation_id=str(raw_operation_id) if raw_operation_id is not None else None,
            )
            await uow.commit()
        log_id = log.id

        logger.info(
            "webhook.received",
            log_id=log_id,
            operation_id=raw_operation_id,
            event_name=raw_event,
        )

        try:
            event = WebhookPayload.model_validate(payload)
        except ValidationError as e:
            return await self._leave_unprocessed(
                log_id,
                str(raw_operation_id) if raw_operation_id is not None else None,
                f"Invalid payload: {e.error_count()} field errors",
            )

        operation_id = event.operation_id
        if not operation_id:
            return await self._leave_unprocessed(log_id, None, "Delivery has no operation id")

        try:
            async with UnitOfWork(session=self._session) as uow:
                operation = await uow.operations.get_by_operation_id(operation_id)
                if operation is None:
                    await uow.webhook_logs.mark_failed(log_id, "Unknown operation")
                    await uow.commit()
                    logger.info(
                        "webhook.unknown_operation",
                        log_id=log_id,
                        operation_id=operation_id,
                    )
                    return WebhookResult(
                        log_id=log_id,
                        operation_id=operation_id,
                        processed=False,
                        error="Unknown operation",
                    )

                stored = await self.reconciler.apply(
                    uow,
                    operation_id,
                    event.reported_status or "",
                    event.to_metadata(),
                )
                await uow.webhook_logs.mark_processed(log_id)
                await uow.commit()
        except Exception as e:
            logger.error(
                "webhook.processing_failed",
                log_id=log_id,
                operation_id=operation_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self._note_failure(log_id, f"{type(e).__name__}: {e}")
            raise WebhookProcessingError(log_id, str(e)) from e

        logger.info(
            "webhook.processed",
            log_id=log_id,
            operation_id=operation_id,
            reported=event.reported_status,
            status=stored.value,
        )
        return WebhookResult(
            log_id=log_id,
            operation_id=operation_id,
            processed=True,
            status=stored.value,
        )

    async def _leave_unprocessed(
        self, log_id: int, operation_id: Optional[str], reason: str
    ) -> WebhookResult:
        await self._note_failure(log_id, reason)
        logger.warning("webhook.unprocessed", log_id=log_id, reason=reason)
        return WebhookResult(
            log_id=log_id, operation_id=operation_id, processed=False, error=reason
        )

    async def _note_failure(self, log_id: int, reason: str) -> None:
        async with UnitOfWork(session=self._session) as uow:
            await uow.webhook_logs.mark_failed(log_id, reason)
            await uow.commit()
