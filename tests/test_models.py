"""Tests for status normalization and the per-kind state machines."""

import pytest

from app.operations.models import (
    OperationKind,
    OperationStatus,
    StatementData,
    StatementLine,
    StatusCheckResult,
    can_transition,
    is_terminal,
    normalize_status,
    predecessors,
)

PAYMENT = OperationKind.PAYMENT
STATEMENT = OperationKind.STATEMENT_REQUEST


class TestNormalizeStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("PAID", OperationStatus.PAID),
            ("paid", OperationStatus.PAID),
            ("PAYMENT_PAID", OperationStatus.PAID),
            ("payment_scheduled", OperationStatus.SCHEDULED),
            ("CANCELED", OperationStatus.CANCELLED),
            ("PAYMENT_CANCELLED", OperationStatus.CANCELLED),
            ("CREATED", OperationStatus.PENDING),
            ("in-progress", OperationStatus.PROCESSING),
            ("FAILED", OperationStatus.ERROR),
        ],
    )
    def test_names_and_synonyms(self, raw, expected):
        assert normalize_status(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "PAYMENT_", "BOGUS"])
    def test_unknown_names(self, raw):
        assert normalize_status(raw) is None

    def test_success_folds_per_kind(self):
        assert normalize_status("SUCCESS") == OperationStatus.COMPLETED
        assert normalize_status("SUCCESS", PAYMENT) == OperationStatus.PAID
        assert normalize_status("CONCLUDED", STATEMENT) == OperationStatus.COMPLETED
        assert normalize_status("PAID", STATEMENT) == OperationStatus.COMPLETED

    def test_failure_folds_to_error_for_statements(self):
        assert normalize_status("CANCELLED", STATEMENT) == OperationStatus.ERROR
        assert normalize_status("rejected", STATEMENT) == OperationStatus.ERROR
        assert normalize_status("REFUNDED", STATEMENT) == OperationStatus.ERROR
        assert normalize_status("CANCELLED", PAYMENT) == OperationStatus.CANCELLED


class TestStateMachine:
    def test_forward_moves(self):
        assert can_transition(PAYMENT, "REQUESTING", "PENDING")
        assert can_transition(PAYMENT, "PENDING", "SCHEDULED")
        assert can_transition(PAYMENT, "SCHEDULED", "PAID")
        assert can_transition(STATEMENT, "PROCESSING", "COMPLETED")

    def test_backward_and_same_rank_moves(self):
        assert not can_transition(PAYMENT, "SCHEDULED", "PROCESSING")
        assert not can_transition(PAYMENT, "PROCESSING", "PROCESSING")

    def test_terminal_is_final(self):
        for status in ("PAID", "REJECTED", "CANCELLED", "REFUNDED", "ERROR"):
            assert is_terminal(status)
            assert not can_transition(PAYMENT, status, "PAID")
            assert not can_transition(PAYMENT, status, "REFUNDED")

    def test_statuses_outside_kind(self):
        assert not can_transition(STATEMENT, "PROCESSING", "SCHEDULED")
        assert not can_transition(STATEMENT, "PROCESSING", "PAID")
        assert not can_transition(PAYMENT, "PROCESSING", "COMPLETED")

    def test_predecessors(self):
        assert set(predecessors(PAYMENT, "PAID")) == {
            OperationStatus.REQUESTING,
            OperationStatus.PENDING,
            OperationStatus.PROCESSING,
            OperationStatus.SCHEDULED,
        }
        assert predecessors(PAYMENT, "PENDING") == [OperationStatus.REQUESTING]
        assert predecessors(STATEMENT, "SCHEDULED") == []


def test_status_check_result_success():
    paid = StatusCheckResult(operation_id="op", is_terminal=True, status=OperationStatus.PAID)
    rejected = StatusCheckResult(
        operation_id="op", is_terminal=True, status=OperationStatus.REJECTED
    )
    assert paid.is_success
    assert not rejected.is_success


def test_statement_totals():
    data = StatementData.from_lines(
        [StatementLine(description="a", amount=10.0), StatementLine(description="b", amount=5.5)],
        [StatementLine(description="c", amount=3.0)],
    )
    assert data.total_credits == 15.5
    assert data.total_debits == 3.0
