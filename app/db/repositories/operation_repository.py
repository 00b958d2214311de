"""Operation repository with specialized queries and guarded status writes."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select, update

from app.db.models.operation import Operation
from app.db.repository import BaseRepository
from app.operations.models import TERMINAL_STATUSES

_TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]


class OperationRepository(BaseRepository[Operation]):
    """Repository for Operation model."""

    async def get_by_operation_id(self, operation_id: str) -> Optional[Operation]:
        """
        Get an operation by its provider-issued identifier.

        Always re-reads the row; guarded updates bypass the identity map.
        """
        result = await self.session.execute(
            select(self.model)
            .where(self.model.operation_id == operation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def reload(self, operation: Operation) -> Operation:
        """Re-read an operation so guarded updates are visible on the instance."""
        await self.session.refresh(operation)
        return operation

    async def get_by_linked_entity(self, linked_entity_id: str) -> List[Operation]:
        """
        Reverse lookup from a business entity to its operations.

        Args:
            linked_entity_id: Ledger transaction identifier

        Returns:
            Operations linked to the entity, newest first
        """
        query = (
            select(self.model)
            .where(self.model.linked_entity_id == linked_entity_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_in_flight(self, limit: Optional[int] = None) -> List[Operation]:
        """Get operations that have not reached a terminal status, oldest first."""
        query = (
            select(self.model)
            .where(self.model.status.notin_(_TERMINAL_VALUES))
            .order_by(self.model.created_at.asc())
        )
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def compare_and_set_status(
        self,
        operation_id: str,
        values: Dict[str, Any],
        from_statuses: Iterable[str],
    ) -> bool:
        """
        Write a status change only while the stored status is one of `from_statuses`.

        Runs `UPDATE operations SET ... WHERE operation_id = :id AND status IN
        (:from_statuses)`. Callers pass the non-terminal statuses that precede
        the new one, so the terminal check and the write are one atomic step
        even when the poll path and the webhook path run in different processes.

        Returns:
            True if this call performed the write
        """
        values = {**values, "updated_at": datetime.now(timezone.utc)}
        allowed = [str(getattr(s, "value", s)) for s in from_statuses]
        allowed = [s for s in allowed if s not in _TERMINAL_VALUES]
        if not allowed:
            return False

        updated = await self.update_where(
            values,
            operation_id=operation_id,
            status__in=allowed,
        )
        return updated == 1

    async def increment_attempts(self, operation_id: str) -> None:
        """Record one more status check against a non-terminal operation."""
        await self.session.execute(
            update(self.model)
            .where(
                self.model.operation_id == operation_id,
                self.model.status.notin_(_TERMINAL_VALUES),
            )
            .values(attempts=self.model.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def count_by_status(self, status: str) -> int:
        """Get count of operations with specific status."""
        return await self.count(status=status)
