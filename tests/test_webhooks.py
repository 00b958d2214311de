"""
Tests for payment webhook intake.

Authentication fails closed, every authenticated delivery is logged before
it is processed, and redeliveries never double-apply side effects.
"""

from datetime import date, datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select, update

from app.core.config import Settings, get_settings
from app.db.models import Operation, Transaction, WebhookLog
from app.main import app
from app.operations.models import OperationKind, OperationStatus
from app.operations.reconciler import Reconciler
from app.webhooks.receiver import (
    WebhookAuthenticationError,
    WebhookNotConfiguredError,
    WebhookReceiver,
)

TEST_WEBHOOK_SECRET = "test-webhook-secret"
URL = "/webhooks/payments"
AUTH = {"x-webhook-secret": TEST_WEBHOOK_SECRET}


def use_secret(secret):
    app.dependency_overrides[get_settings] = lambda: Settings(
        PAYMENT_WEBHOOK_SECRET=secret, WEBHOOK_STUCK_AFTER_MINUTES=15
    )


@pytest_asyncio.fixture
async def client(test_db):
    use_secret(TEST_WEBHOOK_SECRET)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def all_logs(test_db):
    async with test_db() as session:
        result = await session.execute(select(WebhookLog).order_by(WebhookLog.id))
        return list(result.scalars().all())


async def operation_status(test_db, operation_id):
    async with test_db() as session:
        result = await session.execute(
            select(Operation.status).where(Operation.operation_id == operation_id)
        )
        return result.scalar_one()


async def payment_date(test_db, transaction_id):
    async with test_db() as session:
        result = await session.execute(
            select(Transaction.payment_date).where(
                Transaction.transaction_id == transaction_id
            )
        )
        return result.scalar_one()


def test_receiver_authenticate():
    receiver = WebhookReceiver(secret="s3cret")
    receiver.authenticate("s3cret")

    with pytest.raises(WebhookAuthenticationError):
        receiver.authenticate("s3cre")
    with pytest.raises(WebhookAuthenticationError):
        receiver.authenticate(None)
    with pytest.raises(WebhookNotConfiguredError):
        WebhookReceiver(secret="").authenticate("anything")


@pytest.mark.asyncio
class TestAuthentication:
    """Fail-closed secret check."""

    async def test_missing_secret_is_rejected_without_logging(
        self, client, test_db, make_operation
    ):
        await make_operation("op-123")

        response = await client.post(URL, json={"uniqueId": "op-123", "status": "PAID"})

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert await all_logs(test_db) == []
        assert await operation_status(test_db, "op-123") == "PENDING"

    async def test_wrong_secret_is_rejected(self, client, test_db, make_operation):
        await make_operation("op-123")

        response = await client.post(
            URL,
            json={"uniqueId": "op-123", "status": "PAID"},
            headers={"x-webhook-secret": "guess"},
        )

        assert response.status_code == 401
        assert await all_logs(test_db) == []
        assert await operation_status(test_db, "op-123") == "PENDING"

    async def test_unconfigured_secret_rejects_everything(
        self, client, test_db, make_operation
    ):
        await make_operation("op-123")
        use_secret(None)

        response = await client.post(
            URL, json={"uniqueId": "op-123", "status": "PAID"}, headers=AUTH
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Webhook not configured"}
        assert await all_logs(test_db) == []
        assert await operation_status(test_db, "op-123") == "PENDING"


@pytest.mark.asyncio
class TestDelivery:
    """Authenticated deliveries."""

    async def test_paid_redelivery_marks_transaction_once(
        self, client, test_db, make_operation, make_transaction
    ):
        await make_transaction("tx-9")
        await make_operation("op-123", linked_entity_id="tx-9")

        first = await client.post(
            URL,
            json={
                "uniqueId": "op-123",
                "event": "PAYMENT_PAID",
                "status": "PAID",
                "paymentDate": "2024-03-05",
                "endToEndId": "E0001",
            },
            headers=AUTH,
        )
        second = await client.post(
            URL,
            json={"uniqueId": "op-123", "status": "PAID", "paymentDate": "2024-03-09"},
            headers=AUTH,
        )

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["success"] is True
        assert first.json()["status"] == "PAID"
        assert second.json()["status"] == "PAID"

        assert await operation_status(test_db, "op-123") == "PAID"
        assert await payment_date(test_db, "tx-9") == date(2024, 3, 5)

        logs = await all_logs(test_db)
        assert len(logs) == 2
        assert all(log.processed for log in logs)
        assert logs[0].event_type == "PAYMENT_PAID"
        assert logs[0].payload["endToEndId"] == "E0001"

    async def test_unknown_operation_is_logged_unprocessed(self, client, test_db):
        response = await client.post(
            URL, json={"uniqueId": "nope", "status": "PAID"}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json()["processed"] is False

        logs = await all_logs(test_db)
        assert len(logs) == 1
        assert logs[0].processed is False
        assert logs[0].operation_id == "nope"
        assert logs[0].error == "Unknown operation"

    async def test_missing_operation_id_is_logged_unprocessed(self, client, test_db):
        response = await client.post(URL, json={"event": "PAYMENT_PAID"}, headers=AUTH)

        assert response.status_code == 200
        logs = await all_logs(test_db)
        assert logs[0].processed is False
        assert logs[0].error == "Delivery has no operation id"

    async def test_event_name_used_when_status_absent(
        self, client, test_db, make_operation
    ):
        await make_operation("op-123")

        response = await client.post(
            URL, json={"uniqueId": "op-123", "eventType": "payment_scheduled"}, headers=AUTH
        )

        assert response.status_code == 200
        assert await operation_status(test_db, "op-123") == "SCHEDULED"

    async def test_status_preferred_over_event(self, client, test_db, make_operation):
        await make_operation("op-123")

        await client.post(
            URL,
            json={"uniqueId": "op-123", "event": "PAYMENT_SCHEDULED", "status": "CANCELED"},
            headers=AUTH,
        )

        assert await operation_status(test_db, "op-123") == "CANCELLED"

    async def test_unknown_event_leaves_status_and_is_processed(
        self, client, test_db, make_operation
    ):
        await make_operation("op-123", status=OperationStatus.PROCESSING)

        response = await client.post(
            URL, json={"uniqueId": "op-123", "event": "PAYMENT_AUDITED"}, headers=AUTH
        )

        assert response.status_code == 200
        assert await operation_status(test_db, "op-123") == "PROCESSING"
        logs = await all_logs(test_db)
        assert logs[0].processed is True

    async def test_operation_id_alias(self, client, test_db, make_operation):
        await make_operation(
            "stmt-1", kind=OperationKind.STATEMENT_REQUEST, status=OperationStatus.PROCESSING
        )

        await client.post(
            URL, json={"operationId": "stmt-1", "status": "CONCLUDED"}, headers=AUTH
        )

        assert await operation_status(test_db, "stmt-1") == "COMPLETED"

    async def test_numeric_unique_id(self, client, test_db, make_operation):
        await make_operation("12345")

        response = await client.post(
            URL, json={"uniqueId": 12345, "status": "PAID"}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json()["operation_id"] == "12345"
        assert response.json()["processed"] is True
        assert await operation_status(test_db, "12345") == "PAID"

    async def test_invalid_payload_with_numeric_id_is_logged_unprocessed(
        self, client, test_db, make_operation
    ):
        await make_operation("12345")

        response = await client.post(
            URL,
            json={"uniqueId": 12345, "status": "PAID", "occurrences": "not-a-list"},
            headers=AUTH,
        )

        assert response.status_code == 200
        assert response.json()["operation_id"] == "12345"
        assert response.json()["processed"] is False
        logs = await all_logs(test_db)
        assert logs[0].processed is False
        assert logs[0].error.startswith("Invalid payload")
        assert await operation_status(test_db, "12345") == "PENDING"

    async def test_receiver_processes_delivery(self, test_db, make_operation):
        await make_operation("op-123")

        result = await WebhookReceiver(secret="s3cret").receive(
            "s3cret", {"uniqueId": "op-123", "event": "PAYMENT_PAID", "status": "PAID"}
        )

        assert result.processed is True
        assert result.status == "PAID"
        assert await operation_status(test_db, "op-123") == "PAID"

    async def test_reconcile_failure_keeps_row_unprocessed(
        self, client, test_db, make_operation, monkeypatch
    ):
        await make_operation("op-123")

        async def explode(self, uow, operation_id, reported_status, metadata=None):
            raise RuntimeError("database went away")

        monkeypatch.setattr(Reconciler, "apply", explode)

        response = await client.post(
            URL, json={"uniqueId": "op-123", "status": "PAID"}, headers=AUTH
        )

        assert response.status_code == 500
        logs = await all_logs(test_db)
        assert len(logs) == 1
        assert logs[0].processed is False
        assert "database went away" in logs[0].error
        assert await operation_status(test_db, "op-123") == "PENDING"


@pytest.mark.asyncio
class TestStuckDeliveries:
    """Scan for deliveries left unprocessed."""

    async def test_lists_only_old_unprocessed_rows(self, client, test_db, make_operation):
        await make_operation("op-123")
        await client.post(URL, json={"uniqueId": "ghost", "status": "PAID"}, headers=AUTH)
        await client.post(URL, json={"uniqueId": "op-123", "status": "PAID"}, headers=AUTH)
        await client.post(URL, json={"uniqueId": "ghost-2", "status": "PAID"}, headers=AUTH)

        old = datetime.now(timezone.utc) - timedelta(hours=1)
        async with test_db() as session:
            await session.execute(
                update(WebhookLog)
                .where(WebhookLog.operation_id.in_(["ghost", "op-123"]))
                .values(received_at=old)
            )
            await session.commit()

        response = await client.get("/webhooks/stuck", params={"older_than_minutes": 30})

        assert response.status_code == 200
        stuck = response.json()
        assert [row["operation_id"] for row in stuck] == ["ghost"]
        assert stuck[0]["error"] == "Unknown operation"

    async def test_default_threshold_from_settings(self, client, test_db):
        await client.post(URL, json={"uniqueId": "ghost", "status": "PAID"}, headers=AUTH)

        response = await client.get("/webhooks/stuck")

        assert response.status_code == 200
        assert response.json() == []
