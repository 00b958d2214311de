"""Statement entry repository."""

from typing import List

from app.db.models.statement_entry import StatementEntry
from app.db.repository import BaseRepository


class StatementEntryRepository(BaseRepository[StatementEntry]):
    """Repository for StatementEntry model."""

    async def upsert(self, external_id: str, **fields) -> bool:
        """
        Insert a statement line or refresh the existing one.

        Returns:
            True if a new row was inserted
        """
        existing = await self.get_by_field("external_id", external_id)
        if existing is None:
            await self.create(external_id=external_id, **fields)
            return True

        for name, value in fields.items():
            setattr(existing, name, value)
        await self.session.flush()
        return False

    async def get_by_account(self, bank_account_ref: str) -> List[StatementEntry]:
        return await self.filter(bank_account_ref=bank_account_ref)
