"""Ledger transaction repository."""

from datetime import date, datetime, timezone
from typing import Optional

from app.db.models.transaction import Transaction
from app.db.repository import BaseRepository


class TransactionRepository(BaseRepository[Transaction]):
    """Repository for Transaction model."""

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Transaction]:
        """Get a transaction by its business identifier."""
        return await self.get_by_field("transaction_id", transaction_id)

    async def mark_paid_once(self, transaction_id: str, payment_date: date) -> bool:
        """
        Stamp the payment date unless the transaction is already paid.

        Args:
            transaction_id: Business identifier
            payment_date: Settlement date to record

        Returns:
            True if this call marked the transaction paid
        """
        updated = await self.update_where(
            {"payment_date": payment_date, "updated_at": datetime.now(timezone.utc)},
            transaction_id=transaction_id,
            payment_date__isnull=True,
        )
        return updated == 1

    async def count_unpaid(self) -> int:
        return await self.count(payment_date__isnull=True)
