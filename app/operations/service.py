"""
Operation service.

Creates operations against the provider and answers status checks. A status
check asks the provider, feeds the answer through the reconciler and returns
what is stored afterwards, so callers (the poll worker, the API) always see
the reconciled state rather than the raw provider answer.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.operation import Operation
from app.db.unit_of_work import UnitOfWork
from app.operations.clients.base import BaseOperationClient, OperationNotFoundError
from app.operations.models import (
    OperationKind,
    OperationStatus,
    ReconcileMetadata,
    StatusCheckResult,
    is_terminal,
)
from app.operations.reconciler import Reconciler

logger = structlog.get_logger()


class DuplicateOperationError(Exception):
    """Raised when the provider returns an operation id that is already stored."""

    def __init__(self, operation_id: str):
        super().__init__(f"Operation {operation_id} already exists")
        self.operation_id = operation_id


def to_status_result(operation: Operation) -> StatusCheckResult:
    """Build a status check answer from a stored operation."""
    metadata: Dict[str, Any] = {"attempts": operation.attempts}
    if operation.effective_date:
        metadata["effective_date"] = operation.effective_date
    if operation.end_to_end_id:
        metadata["end_to_end_id"] = operation.end_to_end_id
    if operation.occurrences:
        metadata["occurrences"] = operation.occurrences

    return StatusCheckResult(
        operation_id=operation.operation_id,
        is_terminal=operation.is_terminal,
        status=OperationStatus(operation.status),
        result_payload=operation.result_payload,
        error_message=operation.error_message,
        metadata=metadata,
    )


class OperationService:
    """Creates operations and answers reconciled status checks."""

    def __init__(
        self,
        client: BaseOperationClient,
        session: Optional[AsyncSession] = None,
        reconciler: Optional[Reconciler] = None,
    ):
        """
        Args:
            client: Provider client
            session: Optional database session for testing
            reconciler: Reconciler (defaults to one sharing `session`)
        """
        self.client = client
        self._session = session
        self.reconciler = reconciler or Reconciler(session=session)

    async def create_operation(
        self,
        kind: OperationKind,
        parameters: Dict[str, Any],
        linked_entity_id: Optional[str] = None,
        linked_account_ref: Optional[str] = None,
    ) -> Operation:
        """
        Submit an operation to the provider and record it.

        The provider call happens first; the record is inserted with the
        provider-issued id and initial status.

        Raises:
            NeedsReauthorizationError: If the account consent must be renewed
            DuplicateOperationError: If the provider id is already stored
            APIError: Any other provider failure
        """
        created = await self.client.create_operation(kind, parameters)

        async with UnitOfWork(session=self._session) as uow:
            if await uow.operations.get_by_operation_id(created.operation_id):
                raise DuplicateOperationError(created.operation_id)

            try:
                operation = await uow.operations.create(
                    operation_id=created.operation_id,
                    kind=kind.value,
                    source=self.client.get_source_name(),
                    status=created.initial_status.value,
                    linked_entity_id=linked_entity_id,
                    linked_account_ref=linked_account_ref,
                    parameters=parameters,
                    attempts=0,
                )
            except IntegrityError as e:
                raise DuplicateOperationError(created.operation_id) from e
            await uow.commit()

        logger.info(
            "operation.created",
            operation_id=operation.operation_id,
            kind=kind.value,
            status=operation.status,
            linked_entity_id=linked_entity_id,
        )
        return operation

    async def get_operation(self, operation_id: str) -> Operation:
        """
        Raises:
            OperationNotFoundError: If no operation has this id
        """
        async with UnitOfWork(session=self._session) as uow:
            operation = await uow.operations.get_by_operation_id(operation_id)
        if operation is None:
            raise OperationNotFoundError(f"Operation {operation_id} not found")
        return operation

    async def get_by_linked_entity(self, linked_entity_id: str) -> List[Operation]:
        async with UnitOfWork(session=self._session) as uow:
            return await uow.operations.get_by_linked_entity(linked_entity_id)

    async def check_status(
        self, operation_id: str, linked_account_ref: Optional[str] = None
    ) -> StatusCheckResult:
        """
        Check an operation once and reconcile the answer.

        Terminal operations are answered from the store without calling the
        provider. Otherwise the attempt counter is bumped and the provider's
        answer is applied through the reconciler in the same transaction.

        Raises:
            OperationNotFoundError: If the id is unknown here or at the provider
            APIError: Any other provider failure
        """
        operation = await self.get_operation(operation_id)
        if operation.is_terminal:
            return to_status_result(operation)

        kind = OperationKind(operation.kind)
        reported = await self.client.check_status(
            operation_id,
            kind,
            linked_account_ref=linked_account_ref or operation.linked_account_ref,
        )

        metadata = ReconcileMetadata(
            effective_date=reported.metadata.get("effective_date"),
            payment_date=reported.metadata.get("payment_date"),
            occurrences=reported.metadata.get("occurrences"),
            end_to_end_id=reported.metadata.get("end_to_end_id"),
            error_message=reported.error_message,
            result_payload=reported.result_payload,
        )

        async with UnitOfWork(session=self._session) as uow:
            await uow.operations.increment_attempts(operation_id)
            await self.reconciler.apply(uow, operation_id, reported.status, metadata)
            stored = await uow.operations.get_by_operation_id(operation_id)
            await uow.commit()

        logger.debug(
            "operation.status_checked",
            operation_id=operation_id,
            reported=reported.status.value,
            stored=stored.status,
            terminal=is_terminal(stored.status),
        )
        return to_status_result(stored)
