"""Webhook log repository."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import select

from app.db.models.webhook_log import WebhookLog
from app.db.repository import BaseRepository


class WebhookLogRepository(BaseRepository[WebhookLog]):
    """Repository for WebhookLog model."""

    async def record_delivery(
        self,
        payload: Dict[str, Any],
        event_type: Optional[str] = None,
        operation_id: Optional[str] = None,
    ) -> WebhookLog:
        """
        Append a raw delivery with processed = False.

        Args:
            payload: Raw request body
            event_type: Event name or status carried by the delivery
            operation_id: Provider operation id carried by the delivery

        Returns:
            Created log row
        """
        return await self.create(
            payload=payload,
            event_type=event_type,
            operation_id=operation_id,
            processed=False,
        )

    async def mark_processed(self, log_id: int) -> Optional[WebhookLog]:
        return await self.update(
            log_id,
            processed=True,
            processed_at=datetime.now(timezone.utc),
            error=None,
        )

    async def mark_failed(self, log_id: int, error: str) -> Optional[WebhookLog]:
        """Note why a delivery was not processed; it stays unprocessed."""
        return await self.update(log_id, error=error[:2000])

    async def get_by_operation_id(self, operation_id: str) -> List[WebhookLog]:
        """Get every delivery for an operation, oldest first."""
        query = (
            select(self.model)
            .where(self.model.operation_id == operation_id)
            .order_by(self.model.received_at.asc(), self.model.id.asc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_stuck(
        self, older_than_minutes: int, limit: Optional[int] = 100
    ) -> List[WebhookLog]:
        """
        Get unprocessed deliveries received more than N minutes ago.

        Args:
            older_than_minutes: Age threshold
            limit: Maximum number to return

        Returns:
            Stuck deliveries, oldest first
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        query = (
            select(self.model)
            .where(
                self.model.processed.is_(False),
                self.model.received_at < cutoff,
            )
            .order_by(self.model.received_at.asc())
        )
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())
