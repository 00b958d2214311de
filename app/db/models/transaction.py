"""Ledger transaction model: the business record a payment settles."""

from datetime import date, datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Date, Numeric, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Transaction(Base):
    """
    Stores payable/receivable ledger entries.

    A payment operation may link to one of these; when the payment settles
    the reconciler stamps `payment_date` exactly once.
    """

    __tablename__ = "transactions"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Transaction identification
    transaction_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Business identifier referenced by operations",
    )

    # Transaction details
    description: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="Transaction description"
    )
    amount: Mapped[float] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
        comment="Transaction amount",
    )
    due_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True, comment="When the transaction is due"
    )
    payment_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        index=True,
        comment="When the transaction was paid (null while open)",
    )

    # Audit fields
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

    __table_args__ = (
        Index("idx_transaction_due_payment", "due_date", "payment_date"),
    )

    @property
    def is_paid(self) -> bool:
        return self.payment_date is not None

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, transaction_id={self.transaction_id}, "
            f"amount={self.amount}, payment_date={self.payment_date})>"
        )
