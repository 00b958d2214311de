"""Operation domain types: kinds, statuses, state machines and result models."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class OperationKind(str, Enum):
    """Provider actions that complete asynchronously."""

    STATEMENT_REQUEST = "STATEMENT_REQUEST"
    PAYMENT = "PAYMENT"


class OperationStatus(str, Enum):
    """Normalized operation status (superset across kinds)."""

    REQUESTING = "REQUESTING"
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SCHEDULED = "SCHEDULED"
    PAID = "PAID"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


TERMINAL_STATUSES = frozenset(
    {
        OperationStatus.PAID,
        OperationStatus.REJECTED,
        OperationStatus.CANCELLED,
        OperationStatus.REFUNDED,
        OperationStatus.COMPLETED,
        OperationStatus.ERROR,
    }
)

SUCCESS_STATUSES = frozenset({OperationStatus.PAID, OperationStatus.COMPLETED})

TERMINAL_RANK = 100

# Position of each status in a kind's state machine. Terminal statuses share
# the highest rank so no terminal status can follow another.
KIND_STATUS_RANKS: dict[OperationKind, dict[OperationStatus, int]] = {
    OperationKind.STATEMENT_REQUEST: {
        OperationStatus.REQUESTING: 0,
        OperationStatus.PENDING: 1,
        OperationStatus.PROCESSING: 2,
        OperationStatus.COMPLETED: TERMINAL_RANK,
        OperationStatus.ERROR: TERMINAL_RANK,
    },
    OperationKind.PAYMENT: {
        OperationStatus.REQUESTING: 0,
        OperationStatus.PENDING: 1,
        OperationStatus.PROCESSING: 2,
        OperationStatus.SCHEDULED: 3,
        OperationStatus.PAID: TERMINAL_RANK,
        OperationStatus.REJECTED: TERMINAL_RANK,
        OperationStatus.CANCELLED: TERMINAL_RANK,
        OperationStatus.REFUNDED: TERMINAL_RANK,
        OperationStatus.ERROR: TERMINAL_RANK,
    },
}

_STATUS_SYNONYMS: dict[str, OperationStatus] = {
    "CREATED": OperationStatus.PENDING,
    "WAITING": OperationStatus.PENDING,
    "REQUESTED": OperationStatus.REQUESTING,
    "IN_PROGRESS": OperationStatus.PROCESSING,
    "SUCCESS": OperationStatus.COMPLETED,
    "CONCLUDED": OperationStatus.COMPLETED,
    "CANCELED": OperationStatus.CANCELLED,
    "FAILED": OperationStatus.ERROR,
    "FAILURE": OperationStatus.ERROR,
    "DECLINED": OperationStatus.REJECTED,
}

_EVENT_PREFIXES = ("PAYMENT_", "STATEMENT_")
_PAYMENT_FAILURES = frozenset(
    {OperationStatus.REJECTED, OperationStatus.CANCELLED, OperationStatus.REFUNDED}
)


def is_terminal(status: OperationStatus | str) -> bool:
    return OperationStatus(status) in TERMINAL_STATUSES


def is_success(status: OperationStatus | str) -> bool:
    return OperationStatus(status) in SUCCESS_STATUSES


def normalize_status(
    raw: Optional[str], kind: Optional[OperationKind] = None
) -> Optional[OperationStatus]:
    """
    Map a provider status or event name to an OperationStatus.

    Matching is case-insensitive and tolerant of event prefixes and common
    synonyms ("payment_paid" -> PAID, "CANCELED" -> CANCELLED). When a kind is
    given, success and failure statuses the kind does not have are folded
    onto its own success or failure status.

    Returns:
        The normalized status, or None when the name is not recognized
    """
    if not raw:
        return None

    name = raw.strip().upper().replace("-", "_").replace(" ", "_")
    for prefix in _EVENT_PREFIXES:
        if name.startswith(prefix) and len(name) > len(prefix):
            name = name[len(prefix) :]
            break

    status = _STATUS_SYNONYMS.get(name)
    if status is None:
        try:
            status = OperationStatus(name)
        except ValueError:
            return None

    if kind == OperationKind.PAYMENT and status == OperationStatus.COMPLETED:
        return OperationStatus.PAID
    if kind == OperationKind.STATEMENT_REQUEST:
        if status == OperationStatus.PAID:
            return OperationStatus.COMPLETED
        if status in _PAYMENT_FAILURES:
            return OperationStatus.ERROR
    return status


def can_transition(
    kind: OperationKind | str,
    current: OperationStatus | str,
    new: OperationStatus | str,
) -> bool:
    """Whether `new` is a forward move from `current` in the kind's state machine."""
    ranks = KIND_STATUS_RANKS[OperationKind(kind)]
    current = OperationStatus(current)
    new = OperationStatus(new)

    if current in TERMINAL_STATUSES or new not in ranks:
        return False
    return ranks[new] > ranks.get(current, -1)


def predecessors(
    kind: OperationKind | str, new: OperationStatus | str
) -> list[OperationStatus]:
    """Non-terminal statuses from which `new` is a forward move."""
    ranks = KIND_STATUS_RANKS[OperationKind(kind)]
    target = ranks.get(OperationStatus(new))
    if target is None:
        return []
    return [
        status
        for status, rank in ranks.items()
        if rank < target and status not in TERMINAL_STATUSES
    ]


class CreatedOperation(BaseModel):
    """Provider response to an operation-creation request."""

    operation_id: str
    initial_status: OperationStatus = OperationStatus.PROCESSING
    raw: dict[str, Any] = Field(default_factory=dict)


class StatusCheckResult(BaseModel):
    """Answer to a single status check."""

    operation_id: str
    is_terminal: bool
    status: OperationStatus
    result_payload: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.is_terminal and self.status in SUCCESS_STATUSES


class ReconcileMetadata(BaseModel):
    """Settlement details that travel with a reported status."""

    effective_date: Optional[str] = None
    payment_date: Optional[str] = None
    occurrences: Optional[list[Any]] = None
    end_to_end_id: Optional[str] = None
    error_message: Optional[str] = None
    result_payload: Optional[dict[str, Any]] = None


class StatementLine(BaseModel):
    """One normalized statement transaction."""

    id: Optional[str] = None
    date: Optional[str] = None
    description: str
    amount: float
    document: Optional[str] = None


class StatementData(BaseModel):
    """Normalized result of a completed statement request."""

    credits: list[StatementLine] = Field(default_factory=list)
    debits: list[StatementLine] = Field(default_factory=list)
    total_credits: float = 0.0
    total_debits: float = 0.0

    @classmethod
    def from_lines(
        cls, credits: list[StatementLine], debits: list[StatementLine]
    ) -> "StatementData":
        return cls(
            credits=credits,
            debits=debits,
            total_credits=sum(line.amount for line in credits),
            total_debits=sum(line.amount for line in debits),
        )


def today_iso() -> str:
    return date.today().isoformat()
