"""
Mock provider client for testing and development.

Simulates a provider that completes operations after a configurable
number of status checks, without requiring real credentials.
"""

import asyncio
import random
import uuid
from datetime import date, timedelta
from typing import Any, Dict, Optional

from app.operations.clients.base import (
    APIConnectionError,
    BaseOperationClient,
    NeedsReauthorizationError,
    OperationNotFoundError,
)
from app.operations.models import (
    CreatedOperation,
    OperationKind,
    OperationStatus,
    StatementData,
    StatementLine,
    StatusCheckResult,
    is_terminal,
)

_CREDIT_DESCRIPTIONS = ["PIX RECEBIDO", "TED RECEBIDA", "LIQUIDACAO BOLETO", "ESTORNO"]
_DEBIT_DESCRIPTIONS = ["PIX ENVIADO", "PAGAMENTO BOLETO", "TARIFA BANCARIA", "DARF"]


class MockOperationClient(BaseOperationClient):
    """
    Mock client whose operations settle after `completes_after` checks.

    Each kind ends in its success status unless `final_status` overrides it.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        completes_after: int = 3,
        final_status: Optional[OperationStatus] = None,
        failure_rate: float = 0.0,
        latency_ms: int = 100,
        needs_reauthorization: bool = False,
    ):
        """
        Initialize mock client.

        Args:
            api_key: Ignored (mock doesn't need auth)
            base_url: Ignored (mock doesn't make real requests)
            timeout: Simulated timeout
            completes_after: Status checks before the operation settles
            final_status: Terminal status to settle on (defaults per kind)
            failure_rate: Probability of a simulated connection failure
            latency_ms: Simulated network latency in milliseconds
            needs_reauthorization: Reject creations as if consent expired
        """
        super().__init__(api_key, base_url, timeout)
        self.completes_after = completes_after
        self.final_status = final_status
        self.failure_rate = failure_rate
        self.latency_ms = latency_ms
        self.needs_reauthorization = needs_reauthorization
        self._checks: Dict[str, int] = {}
        self._kinds: Dict[str, OperationKind] = {}
        self._forgotten: set[str] = set()

    def get_source_name(self) -> str:
        """Return source identifier."""
        return "mock"

    async def validate_credentials(self) -> bool:
        """Mock credential validation always succeeds."""
        await self._simulate_latency()
        return True

    async def create_operation(
        self, kind: OperationKind, parameters: Dict[str, Any]
    ) -> CreatedOperation:
        await self._simulate_latency()
        self._maybe_fail()

        if self.needs_reauthorization:
            raise NeedsReauthorizationError(
                "Account consent expired; reconnect the bank account", status_code=422
            )

        operation_id = f"mock-{uuid.uuid4().hex[:12]}"
        self._checks[operation_id] = 0
        self._kinds[operation_id] = kind

        initial = (
            OperationStatus.PENDING
            if kind == OperationKind.PAYMENT
            else OperationStatus.PROCESSING
        )
        return CreatedOperation(
            operation_id=operation_id,
            initial_status=initial,
            raw={"uniqueId": operation_id, "status": initial.value},
        )

    async def check_status(
        self,
        operation_id: str,
        kind: OperationKind,
        linked_account_ref: Optional[str] = None,
    ) -> StatusCheckResult:
        await self._simulate_latency()
        self._maybe_fail()

        if operation_id in self._forgotten:
            raise OperationNotFoundError(
                f"Operation {operation_id} not found", status_code=404
            )
        if operation_id not in self._checks:
            # Operations created elsewhere are adopted on first sight.
            self._checks[operation_id] = 0
            self._kinds[operation_id] = kind

        self._checks[operation_id] += 1
        if self._checks[operation_id] < self.completes_after:
            return StatusCheckResult(
                operation_id=operation_id,
                is_terminal=False,
                status=OperationStatus.PROCESSING,
            )

        status = self.final_status or (
            OperationStatus.PAID
            if kind == OperationKind.PAYMENT
            else OperationStatus.COMPLETED
        )
        if not is_terminal(status):
            return StatusCheckResult(
                operation_id=operation_id, is_terminal=False, status=status
            )

        payload: Optional[Dict[str, Any]] = None
        metadata: Dict[str, Any] = {}
        error_message = None
        if status == OperationStatus.COMPLETED:
            payload = self._generate_statement().model_dump()
        elif status == OperationStatus.PAID:
            metadata = {
                "effective_date": date.today().isoformat(),
                "end_to_end_id": f"E{uuid.uuid4().hex[:20].upper()}",
            }
        else:
            error_message = f"Mock provider ended operation with {status.value}"

        return StatusCheckResult(
            operation_id=operation_id,
            is_terminal=True,
            status=status,
            result_payload=payload,
            error_message=error_message,
            metadata=metadata,
        )

    def forget(self, operation_id: str) -> None:
        """Drop an operation so later checks raise OperationNotFoundError."""
        self._checks.pop(operation_id, None)
        self._kinds.pop(operation_id, None)
        self._forgotten.add(operation_id)

    def check_count(self, operation_id: str) -> int:
        return self._checks.get(operation_id, 0)

    def _generate_statement(self) -> StatementData:
        today = date.today()
        credits = [
            StatementLine(
                id=f"mock-c-{uuid.uuid4().hex[:8]}",
                date=(today - timedelta(days=random.randint(0, 30))).isoformat(),
                description=random.choice(_CREDIT_DESCRIPTIONS),
                amount=round(random.uniform(50, 5000), 2),
            )
            for _ in range(random.randint(1, 5))
        ]
        debits = [
            StatementLine(
                id=f"mock-d-{uuid.uuid4().hex[:8]}",
                date=(today - timedelta(days=random.randint(0, 30))).isoformat(),
                description=random.choice(_DEBIT_DESCRIPTIONS),
                amount=round(random.uniform(10, 3000), 2),
            )
            for _ in range(random.randint(1, 5))
        ]
        return StatementData.from_lines(credits, debits)

    def _maybe_fail(self) -> None:
        if random.random() < self.failure_rate:
            raise APIConnectionError("Simulated provider connection failure")

    async def _simulate_latency(self) -> None:
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000)
