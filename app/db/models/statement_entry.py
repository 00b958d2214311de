"""Statement entry model for lines imported from completed statement requests."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Numeric, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class StatementEntry(Base):
    """Bank statement line, unique per external id so re-imports are no-ops."""

    __tablename__ = "statement_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    external_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Provider transaction id, or date-amount-description fallback",
    )
    bank_account_ref: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True, comment="Account the line belongs to"
    )
    operation_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True,
        comment="Statement request that imported this line",
    )

    statement_date: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, comment="Posting date as reported"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount: Mapped[float] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
        comment="Signed amount: credits positive, debits negative",
    )
    entry_type: Mapped[str] = mapped_column(
        String(10), nullable=False, comment="'credit' or 'debit'"
    )

    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_statement_entry_account_date", "bank_account_ref", "statement_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<StatementEntry(id={self.id}, external_id={self.external_id}, "
            f"amount={self.amount}, type={self.entry_type})>"
        )
