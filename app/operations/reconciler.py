"""
Operation reconciler.

The one place where a reported provider status is applied to an Operation.
Both the poll path and the webhook path call it; deliveries may arrive late,
out of order or more than once, and every such case must converge on the
same stored state with linked-entity side effects applied at most once.
"""

from datetime import date, datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.operation import Operation
from app.db.unit_of_work import UnitOfWork
from app.operations.clients.base import OperationNotFoundError
from app.operations.models import (
    OperationKind,
    OperationStatus,
    ReconcileMetadata,
    StatementData,
    SUCCESS_STATUSES,
    TERMINAL_STATUSES,
    can_transition,
    normalize_status,
    predecessors,
)

logger = structlog.get_logger()


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


class Reconciler:
    """Idempotent state-transition function for operations."""

    def __init__(self, session: Optional[AsyncSession] = None):
        """
        Args:
            session: Optional database session for testing
        """
        self._session = session

    async def reconcile(
        self,
        operation_id: str,
        reported_status: OperationStatus | str,
        metadata: Optional[ReconcileMetadata] = None,
    ) -> OperationStatus:
        """
        Apply a reported status in its own unit of work.

        Returns:
            The status stored after the call

        Raises:
            OperationNotFoundError: If no operation has this id
        """
        async with UnitOfWork(session=self._session) as uow:
            applied = await self.apply(uow, operation_id, reported_status, metadata)
            await uow.commit()
        return applied

    async def apply(
        self,
        uow: UnitOfWork,
        operation_id: str,
        reported_status: OperationStatus | str,
        metadata: Optional[ReconcileMetadata] = None,
    ) -> OperationStatus:
        """
        Apply a reported status inside the caller's unit of work.

        Rules:
            * terminal operations are never changed (duplicate or late report)
            * unknown or backward statuses leave the operation as it is
            * the write is a conditional UPDATE guarded on the current status,
              so a concurrent writer that got there first wins cleanly
            * a success-terminal transition stamps the linked ledger
              transaction once, and imports statement lines when the result
              is a statement
        """
        metadata = metadata or ReconcileMetadata()

        operation = await uow.operations.get_by_operation_id(operation_id)
        if operation is None:
            raise OperationNotFoundError(f"Operation {operation_id} not found")

        kind = OperationKind(operation.kind)
        current = OperationStatus(operation.status)
        log = logger.bind(operation_id=operation_id, kind=kind.value, current=current.value)

        if current in TERMINAL_STATUSES:
            log.info("reconcile.skipped.terminal", reported=str(reported_status))
            return current

        raw = (
            reported_status.value
            if isinstance(reported_status, OperationStatus)
            else reported_status
        )
        new_status = normalize_status(raw, kind)

        if new_status is None:
            log.warning("reconcile.skipped.unknown_status", reported=str(reported_status))
            return current

        if not can_transition(kind, current, new_status):
            log.info("reconcile.skipped.not_forward", reported=new_status.value)
            return current

        terminal = new_status in TERMINAL_STATUSES
        values = self._build_values(new_status, terminal, metadata)

        applied = await uow.operations.compare_and_set_status(
            operation_id, values, from_statuses=predecessors(kind, new_status)
        )
        await uow.operations.reload(operation)

        if not applied:
            log.info(
                "reconcile.lost_race",
                reported=new_status.value,
                stored=operation.status,
            )
            return OperationStatus(operation.status)

        log.info("reconcile.applied", new=new_status.value, terminal=terminal)

        if new_status in SUCCESS_STATUSES:
            await self._propagate_success(uow, operation, metadata)

        return new_status

    @staticmethod
    def _build_values(
        new_status: OperationStatus, terminal: bool, metadata: ReconcileMetadata
    ) -> dict:
        values: dict = {"status": new_status.value}

        if metadata.effective_date:
            values["effective_date"] = metadata.effective_date
        if metadata.occurrences:
            values["occurrences"] = metadata.occurrences
        if metadata.end_to_end_id:
            values["end_to_end_id"] = metadata.end_to_end_id

        if terminal:
            values["completed_at"] = datetime.now(timezone.utc)
            if metadata.result_payload is not None:
                values["result_payload"] = metadata.result_payload
            if new_status not in SUCCESS_STATUSES and metadata.error_message:
                values["error_message"] = metadata.error_message

        return values

    async def _propagate_success(
        self, uow: UnitOfWork, operation: Operation, metadata: ReconcileMetadata
    ) -> None:
        if operation.linked_entity_id:
            paid_on = (
                _parse_date(metadata.payment_date)
                or _parse_date(metadata.effective_date)
                or date.today()
            )
            marked = await uow.transactions.mark_paid_once(
                operation.linked_entity_id, paid_on
            )
            logger.info(
                "reconcile.linked_entity",
                operation_id=operation.operation_id,
                linked_entity_id=operation.linked_entity_id,
                marked_paid=marked,
                payment_date=paid_on.isoformat(),
            )

        if (
            operation.kind == OperationKind.STATEMENT_REQUEST.value
            and operation.linked_account_ref
            and operation.result_payload
        ):
            await self._import_statement(uow, operation)

    @staticmethod
    async def _import_statement(uow: UnitOfWork, operation: Operation) -> None:
        statement = StatementData.model_validate(operation.result_payload)
        inserted = 0

        for entry_type, lines, sign in (
            ("credit", statement.credits, 1),
            ("debit", statement.debits, -1),
        ):
            for line in lines:
                external_id = line.id or f"{line.date}-{line.amount}-{line.description}"
                created = await uow.statement_entries.upsert(
                    external_id,
                    bank_account_ref=operation.linked_account_ref,
                    operation_id=operation.operation_id,
                    statement_date=line.date,
                    description=line.description,
                    amount=sign * abs(line.amount),
                    entry_type=entry_type,
                )
                inserted += int(created)

        logger.info(
            "reconcile.statement_imported",
            operation_id=operation.operation_id,
            lines=len(statement.credits) + len(statement.debits),
            inserted=inserted,
        )
