"""Operation model for externally-fulfilled, asynchronously-completed requests."""

from datetime import datetime, timezone
from typing import Any, Optional
from sqlalchemy import JSON, String, Text, DateTime, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.operations.models import OperationStatus, is_terminal


class Operation(Base):
    """
    Stores one provider operation (statement request, payment) keyed by the
    provider-issued unique identifier.

    Status is written only through the reconciler; the poll path and the
    webhook path both converge on this row.
    """

    __tablename__ = "operations"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identification
    operation_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Provider-issued unique identifier (idempotency key)",
    )
    kind: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Operation kind (e.g., 'STATEMENT_REQUEST', 'PAYMENT')",
    )
    source: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="mock",
        comment="Provider client that created the operation",
    )
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=OperationStatus.REQUESTING.value,
        index=True,
        comment="Normalized operation status",
    )

    # Linkage
    linked_entity_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Ledger transaction updated once on successful completion",
    )
    linked_account_ref: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Bank account the operation acts on",
    )

    # Request and result
    parameters: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="Creation parameters sent to the provider"
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Status checks made so far"
    )
    result_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="Normalized result, attached on completion"
    )
    occurrences: Mapped[Optional[list[Any]]] = mapped_column(
        JSON, nullable=True, comment="Provider occurrence codes"
    )
    effective_date: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, comment="Settlement date reported by provider"
    )
    end_to_end_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="End-to-end id of the settlement"
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="Provider error for failed operations"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set iff status is terminal",
    )

    __table_args__ = (
        Index("idx_operation_kind_status", "kind", "status"),
        Index("idx_operation_status_created", "status", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def __repr__(self) -> str:
        return (
            f"<Operation(id={self.id}, operation_id={self.operation_id}, "
            f"kind={self.kind}, status={self.status})>"
        )
