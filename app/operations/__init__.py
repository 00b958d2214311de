"""
Asynchronous provider operation tracking.

This module creates long-running provider operations (statement requests,
payments), polls them with staged backoff and reconciles every reported
status into the stored record.
"""

from app.operations.models import (
    OperationKind,
    OperationStatus,
    StatusCheckResult,
    CreatedOperation,
)
from app.operations.backoff import next_delay, estimated_remaining
from app.operations.poller import OperationPoller, PollerRegistry

__all__ = [
    "OperationKind",
    "OperationStatus",
    "StatusCheckResult",
    "CreatedOperation",
    "next_delay",
    "estimated_remaining",
    "OperationPoller",
    "PollerRegistry",
]
