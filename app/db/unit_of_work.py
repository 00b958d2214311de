"""Unit of Work pattern for managing database transactions."""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import base as db_base
from app.db.models import Operation, WebhookLog, Transaction, StatementEntry
from app.db.repositories import (
    OperationRepository,
    WebhookLogRepository,
    TransactionRepository,
    StatementEntryRepository,
)


class UnitOfWork:
    """
    Unit of Work pattern implementation for managing database transactions.

    Every repository in a context shares one session, so a status write and
    its linked-entity write commit or roll back together.

    Usage:
        async with UnitOfWork() as uow:
            operation = await uow.operations.get_by_operation_id("op-123")
            await uow.transactions.mark_paid_once("tx-9", date.today())
            await uow.commit()
    """

    def __init__(self, session: Optional[AsyncSession] = None):
        """
        Initialize Unit of Work.

        Args:
            session: Optional existing session (useful for testing)
        """
        self._session = session
        self._owned_session = session is None

        # Repositories (initialized in __aenter__)
        self.operations: OperationRepository = None  # type: ignore
        self.webhook_logs: WebhookLogRepository = None  # type: ignore
        self.transactions: TransactionRepository = None  # type: ignore
        self.statement_entries: StatementEntryRepository = None  # type: ignore

    async def __aenter__(self):
        """Enter async context manager."""
        if self._owned_session:
            self._session = db_base.AsyncSessionLocal()

        assert self._session is not None, "Session must be initialized"
        self.operations = OperationRepository(Operation, self._session)
        self.webhook_logs = WebhookLogRepository(WebhookLog, self._session)
        self.transactions = TransactionRepository(Transaction, self._session)
        self.statement_entries = StatementEntryRepository(StatementEntry, self._session)

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        if exc_type is not None:
            await self.rollback()
        elif self._owned_session:
            await self.commit()

        if self._owned_session and self._session:
            await self._session.close()

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()

    async def flush(self):
        """Flush pending changes to the database without committing."""
        if self._session:
            await self._session.flush()
