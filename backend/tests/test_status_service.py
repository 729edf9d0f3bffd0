# Overview: Pytest coverage for the payment-status state machine.

"""
Status Deriver Tests

derive_status is pure, so these run without a database.
"""

from datetime import date, datetime, timedelta

import pytest

from lenden.services.status_service import (
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_OVERDUE,
    derive_status,
    is_overdue_candidate,
)


TODAY = date(2026, 3, 15)


class TestDeriveStatus:

    def test_fully_paid_is_completed(self):
        assert derive_status(500, 500, None, TODAY) == STATUS_COMPLETED

    def test_overpaid_is_completed(self):
        assert derive_status(500, 700, TODAY - timedelta(days=30), TODAY) == STATUS_COMPLETED

    def test_due_without_due_date_is_pending(self):
        assert derive_status(500, 200, None, TODAY) == STATUS_PENDING

    def test_due_date_in_future_is_pending(self):
        assert derive_status(500, 200, TODAY + timedelta(days=1), TODAY) == STATUS_PENDING

    def test_due_today_is_not_overdue(self):
        """Date comparison: due today becomes overdue tomorrow."""
        assert derive_status(500, 200, TODAY, TODAY) == STATUS_PENDING

    def test_due_date_elapsed_is_overdue(self):
        assert derive_status(500, 200, TODAY - timedelta(days=1), TODAY) == STATUS_OVERDUE

    def test_datetime_now_compares_by_date(self):
        late_evening = datetime(2026, 3, 15, 23, 59, 59)
        assert derive_status(500, 200, TODAY, late_evening) == STATUS_PENDING
        assert derive_status(500, 200, TODAY, late_evening + timedelta(seconds=1)) == STATUS_OVERDUE

    @pytest.mark.parametrize("amount,paid,due_date", [
        (0, 0, None),
        (100, 0, None),
        (100, 99, TODAY - timedelta(days=3)),
        (100, 100, TODAY - timedelta(days=3)),
    ])
    def test_never_derives_cancelled(self, amount, paid, due_date):
        assert derive_status(amount, paid, due_date, TODAY) != STATUS_CANCELLED

    def test_completed_iff_nothing_due(self):
        for amount, paid in [(100, 0), (100, 50), (100, 100), (100, 150), (0, 0)]:
            status = derive_status(amount, paid, None, TODAY)
            assert (status == STATUS_COMPLETED) == (amount - paid <= 0)


class TestOverdueCandidate:

    def test_pending_with_elapsed_due_date(self):
        assert is_overdue_candidate(STATUS_PENDING, 500, 200, TODAY - timedelta(days=1), TODAY)

    def test_already_overdue_is_not_candidate(self):
        assert not is_overdue_candidate(STATUS_OVERDUE, 500, 200, TODAY - timedelta(days=1), TODAY)

    def test_cancelled_is_not_candidate(self):
        assert not is_overdue_candidate(STATUS_CANCELLED, 500, 200, TODAY - timedelta(days=1), TODAY)

    def test_paid_is_not_candidate(self):
        assert not is_overdue_candidate(STATUS_PENDING, 500, 500, TODAY - timedelta(days=1), TODAY)

    def test_no_due_date_is_not_candidate(self):
        assert not is_overdue_candidate(STATUS_PENDING, 500, 200, None, TODAY)

    def test_due_today_is_not_candidate(self):
        assert not is_overdue_candidate(STATUS_PENDING, 500, 200, TODAY, TODAY)
