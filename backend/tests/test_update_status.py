# Overview: Pytest coverage for explicit status updates and balance reconciliation.

"""
Status Update Tests

update_status goes through one reconcile routine: whatever the transition,
stored balances must stay equal to a replay of the ledger.
"""

import pytest

from lenden.errors import InvalidStatusTransition, NotFound
from lenden.models import Customer, Product, Vendor, Transaction
from lenden.services import balance_service, ledger_service
from lenden.services.status_service import (
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_OVERDUE,
)

from conftest import product_line


@pytest.fixture
def open_sale(db_session, shop_a, product_a2, customer_a, published_events):
    """Sale of 500 with 200 paid: customer due 300."""
    return ledger_service.create_sale(
        shop_a.id, [product_line(product_a2, 2)], 200, "cash", customer_id=customer_a.id,
    )


def _due(db_session, customer_id):
    return db_session.get(Customer, customer_id).total_due_cents


def _assert_no_drift(shop_id):
    assert balance_service.find_balance_drift(shop_id) == []


class TestUpdateStatus:

    def test_complete_settles_due(self, db_session, shop_a, customer_a, open_sale):
        result = ledger_service.update_status(shop_a.id, open_sale, STATUS_COMPLETED)

        assert result["status"] == STATUS_COMPLETED
        assert result["paid_amount_cents"] == 500
        assert result["due_amount_cents"] == 0
        assert _due(db_session, customer_a.id) == 0
        _assert_no_drift(shop_a.id)

    def test_cancel_releases_due_but_keeps_stock_and_spent(
        self, db_session, shop_a, product_a2, customer_a, open_sale
    ):
        ledger_service.update_status(shop_a.id, open_sale, STATUS_CANCELLED)

        customer = db_session.get(Customer, customer_a.id)
        assert customer.total_due_cents == 0
        assert customer.total_spent_cents == 500
        assert db_session.get(Product, product_a2.id).stock_quantity == 18
        assert db_session.get(Transaction, open_sale).status == STATUS_CANCELLED
        _assert_no_drift(shop_a.id)

    def test_reopen_cancelled_reapplies_due(self, db_session, shop_a, customer_a, open_sale):
        ledger_service.update_status(shop_a.id, open_sale, STATUS_CANCELLED)
        ledger_service.update_status(shop_a.id, open_sale, STATUS_PENDING)

        assert _due(db_session, customer_a.id) == 300
        _assert_no_drift(shop_a.id)

    def test_complete_after_cancel_does_not_double_release(self, db_session, shop_a, customer_a, open_sale):
        ledger_service.update_status(shop_a.id, open_sale, STATUS_CANCELLED)
        ledger_service.update_status(shop_a.id, open_sale, STATUS_COMPLETED)

        assert _due(db_session, customer_a.id) == 0
        _assert_no_drift(shop_a.id)

    def test_mark_overdue_manually(self, db_session, shop_a, customer_a, open_sale):
        ledger_service.update_status(shop_a.id, open_sale, STATUS_OVERDUE)

        assert db_session.get(Transaction, open_sale).status == STATUS_OVERDUE
        assert _due(db_session, customer_a.id) == 300
        _assert_no_drift(shop_a.id)

    def test_same_status_is_noop(self, db_session, shop_a, customer_a, open_sale):
        before = db_session.get(Transaction, open_sale).version_id

        result = ledger_service.update_status(shop_a.id, open_sale, STATUS_PENDING)

        assert result["status"] == STATUS_PENDING
        assert db_session.get(Transaction, open_sale).version_id == before
        assert _due(db_session, customer_a.id) == 300

    def test_pending_on_paid_transaction_rejected(self, db_session, shop_a, product_a, published_events):
        txn_id = ledger_service.create_sale(shop_a.id, [product_line(product_a, 1)], 100, "cash")

        with pytest.raises(InvalidStatusTransition):
            ledger_service.update_status(shop_a.id, txn_id, STATUS_PENDING)
        assert db_session.get(Transaction, txn_id).status == STATUS_COMPLETED

    def test_unknown_status_rejected(self, db_session, shop_a, open_sale):
        with pytest.raises(InvalidStatusTransition):
            ledger_service.update_status(shop_a.id, open_sale, "Refunded")

    def test_other_shop_transaction_not_found(self, db_session, shop_a, shop_b, open_sale):
        with pytest.raises(NotFound):
            ledger_service.update_status(shop_b.id, open_sale, STATUS_COMPLETED)
        assert db_session.get(Transaction, open_sale).status == STATUS_PENDING

    def test_complete_purchase_settles_vendor_payable(self, db_session, shop_a, product_a, vendor_a):
        txn_id = ledger_service.create_purchase(
            shop_a.id, vendor_a.id,
            [{"product_id": product_a.id, "quantity": 10, "unit_price": 50}], 200,
        )
        assert db_session.get(Vendor, vendor_a.id).total_payable_cents == 300

        ledger_service.update_status(shop_a.id, txn_id, STATUS_COMPLETED)

        assert db_session.get(Vendor, vendor_a.id).total_payable_cents == 0
        _assert_no_drift(shop_a.id)

    def test_cancel_purchase_releases_vendor_payable(self, db_session, shop_a, product_a, vendor_a):
        txn_id = ledger_service.create_purchase(
            shop_a.id, vendor_a.id,
            [{"product_id": product_a.id, "quantity": 10, "unit_price": 50}], 0,
        )
        ledger_service.update_status(shop_a.id, txn_id, STATUS_CANCELLED)

        assert db_session.get(Vendor, vendor_a.id).total_payable_cents == 0
        _assert_no_drift(shop_a.id)
