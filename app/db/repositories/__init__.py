"""Repository exports."""

from .operation_repository import OperationRepository
from .webhook_log_repository import WebhookLogRepository
from .transaction_repository import TransactionRepository
from .statement_entry_repository import StatementEntryRepository

__all__ = [
    "OperationRepository",
    "WebhookLogRepository",
    "TransactionRepository",
    "StatementEntryRepository",
]
