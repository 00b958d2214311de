import os
import sys
from pathlib import Path
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure project root is on sys.path so `import app` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Force test database URL before any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("OPERATION_CLIENT_TYPE", "mock")

from app.db import base as db_base  # noqa: E402
from app.db.models import Operation, Transaction  # noqa: E402
from app.operations.models import OperationKind, OperationStatus  # noqa: E402


@pytest_asyncio.fixture
async def test_db(monkeypatch) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Provide a fresh in-memory database per test.

    app.db.base is patched so every UnitOfWork opened by the code under test
    uses the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(db_base.Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    monkeypatch.setattr(db_base, "engine", engine)
    monkeypatch.setattr(db_base, "AsyncSessionLocal", session_factory)

    yield session_factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_db) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session for a test."""
    async with test_db() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_operation(test_db):
    """Insert an operation row and return it."""

    async def _make(
        operation_id: str = "op-123",
        kind: OperationKind = OperationKind.PAYMENT,
        status: OperationStatus = OperationStatus.PENDING,
        linked_entity_id: str | None = None,
        linked_account_ref: str | None = None,
        attempts: int = 0,
    ) -> Operation:
        async with test_db() as session:
            operation = Operation(
                operation_id=operation_id,
                kind=kind.value,
                source="mock",
                status=status.value,
                linked_entity_id=linked_entity_id,
                linked_account_ref=linked_account_ref,
                parameters={},
                attempts=attempts,
            )
            session.add(operation)
            await session.commit()
            return operation

    return _make


@pytest.fixture
def make_transaction(test_db):
    """Insert an unpaid ledger transaction and return it."""

    async def _make(transaction_id: str = "tx-9", amount: str = "150.00") -> Transaction:
        async with test_db() as session:
            transaction = Transaction(
                transaction_id=transaction_id,
                description="Supplier invoice",
                amount=Decimal(amount),
                due_date=date(2024, 3, 1),
            )
            session.add(transaction)
            await session.commit()
            return transaction

    return _make
