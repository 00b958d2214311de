"""Webhook delivery models."""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.operations.models import ReconcileMetadata


class WebhookPayload(BaseModel):
    """
    Provider payment delivery.

    Only the fields used for reconciliation are typed; everything else is
    kept as extra data and stored verbatim in the webhook log.
    """

    model_config = ConfigDict(
        extra="allow", populate_by_name=True, coerce_numbers_to_str=True
    )

    unique_id: Optional[str] = Field(default=None, alias="uniqueId")
    operation_id_field: Optional[str] = Field(default=None, alias="operationId")
    event: Optional[str] = None
    event_type: Optional[str] = Field(default=None, alias="eventType")
    status: Optional[str] = None
    effective_date: Optional[str] = Field(default=None, alias="effectiveDate")
    payment_date: Optional[str] = Field(default=None, alias="paymentDate")
    occurrences: Optional[List[Any]] = None
    end_to_end_id: Optional[str] = Field(default=None, alias="endToEndId")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")

    @property
    def operation_id(self) -> Optional[str]:
        return self.operation_id_field or self.unique_id

    @property
    def event_name(self) -> Optional[str]:
        return self.event or self.event_type

    @property
    def reported_status(self) -> Optional[str]:
        """Explicit status wins over the event name."""
        return self.status or self.event_name

    def to_metadata(self) -> ReconcileMetadata:
        return ReconcileMetadata(
            effective_date=self.effective_date,
            payment_date=self.payment_date,
            occurrences=self.occurrences,
            end_to_end_id=self.end_to_end_id,
            error_message=self.error_message,
        )


class WebhookResult(BaseModel):
    """Outcome of one delivery."""

    log_id: int
    operation_id: Optional[str] = None
    processed: bool
    status: Optional[str] = None
    error: Optional[str] = None


class StuckDelivery(BaseModel):
    """Unprocessed delivery older than the stuck threshold."""

    id: int
    event_type: Optional[str] = None
    operation_id: Optional[str] = None
    error: Optional[str] = None
    received_at: str
