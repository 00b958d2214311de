"""Webhook log model: append-only audit of provider deliveries."""

from datetime import datetime, timezone
from typing import Any, Optional
from sqlalchemy import JSON, String, Text, DateTime, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class WebhookLog(Base):
    """
    One row per webhook delivery, written before any state mutation.

    `processed` flips to True only after reconciliation succeeds, so rows
    left unprocessed past a threshold point at stuck or failed deliveries.
    """

    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    event_type: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True,
        comment="Event name or status sent by the provider"
    )
    operation_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True,
        comment="Provider operation id carried by the delivery"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False,
        comment="Raw delivery body"
    )

    processed: Mapped[bool] = mapped_column(
        default=False, nullable=False, index=True,
        comment="Whether reconciliation completed for this delivery"
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
        comment="When reconciliation completed"
    )
    error: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True,
        comment="Why the delivery was not processed"
    )

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc), index=True,
        comment="When the delivery arrived"
    )

    __table_args__ = (
        Index("idx_webhook_log_processed_received", "processed", "received_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WebhookLog(id={self.id}, event_type={self.event_type}, "
            f"operation_id={self.operation_id}, processed={self.processed})>"
        )
