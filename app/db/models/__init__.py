"""Database models for the bank operation tracker."""

from .operation import Operation
from .webhook_log import WebhookLog
from .transaction import Transaction
from .statement_entry import StatementEntry

__all__ = ["Operation", "WebhookLog", "Transaction", "StatementEntry"]
