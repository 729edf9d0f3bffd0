# Overview: Balance Tracker; signed atomic adjustments and replay of customer/vendor balances.

"""
Balance Tracker

Customer.total_due_cents / total_spent_cents and Vendor.total_payable_cents
are materialized aggregates over the transaction ledger.

Write side:
- All adjustments are single `SET col = col + :delta` statements scoped to
  (entity, shop), executed inside the caller's unit of work. No Python-side
  read-modify-write, so two concurrent sales for the same customer cannot
  lose an update.
- Guarded decrements add `AND col >= :amount` and report whether the row
  was covered, for callers that must never push a balance below zero.

Read side (replay):
- customer total_due  = sum over non-cancelled sales of max(0, amount - paid)
                        - sum of payment_received amounts
- customer total_spent = sum of sale amounts
- vendor total_payable = sum over non-cancelled purchases of max(0, amount - paid)
                         - sum of payment_made amounts

Replayed values must equal stored values after any sequence of ledger
operations; find_balance_drift() reports rows where they do not.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import case, func, update

from ..extensions import db
from ..models import Customer, Vendor, Transaction
from ..models.transactions import TYPE_SALE, TYPE_PURCHASE, TYPE_PAYMENT_RECEIVED, TYPE_PAYMENT_MADE
from ..errors import NotFound
from .concurrency import expire_cached
from .status_service import STATUS_CANCELLED


@dataclass(frozen=True)
class BalanceDrift:
    entity_type: str  # "customer" | "vendor"
    entity_id: int
    field: str
    stored_cents: int
    recomputed_cents: int

    @property
    def difference_cents(self) -> int:
        return self.stored_cents - self.recomputed_cents

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "field": self.field,
            "stored_cents": self.stored_cents,
            "recomputed_cents": self.recomputed_cents,
            "difference_cents": self.difference_cents,
        }


# =============================================================================
# ATOMIC ADJUSTMENTS
# =============================================================================

def _adjust(model, column, shop_id: int, entity_id: int, delta_cents: int, label: str) -> None:
    result = db.session.execute(
        update(model)
        .where(model.id == entity_id, model.shop_id == shop_id)
        .values({column: column + delta_cents})
        .execution_options(synchronize_session=False)
    )
    expire_cached(model, entity_id)
    if result.rowcount != 1:
        raise NotFound(f"{label} not found", details={f"{label.lower()}_id": entity_id})


def adjust_customer_due(shop_id: int, customer_id: int, delta_cents: int) -> None:
    _adjust(Customer, Customer.total_due_cents, shop_id, customer_id, delta_cents, "Customer")


def adjust_customer_spent(shop_id: int, customer_id: int, delta_cents: int) -> None:
    _adjust(Customer, Customer.total_spent_cents, shop_id, customer_id, delta_cents, "Customer")


def adjust_vendor_payable(shop_id: int, vendor_id: int, delta_cents: int) -> None:
    _adjust(Vendor, Vendor.total_payable_cents, shop_id, vendor_id, delta_cents, "Vendor")


def _decrement_guarded(model, column, shop_id: int, entity_id: int, amount_cents: int) -> bool:
    result = db.session.execute(
        update(model)
        .where(
            model.id == entity_id,
            model.shop_id == shop_id,
            column >= amount_cents,
        )
        .values({column: column - amount_cents})
        .execution_options(synchronize_session=False)
    )
    expire_cached(model, entity_id)
    return result.rowcount == 1


def decrement_vendor_payable_guarded(shop_id: int, vendor_id: int, amount_cents: int) -> bool:
    """Reduce total_payable only if it covers amount_cents. Returns False otherwise."""
    return _decrement_guarded(Vendor, Vendor.total_payable_cents, shop_id, vendor_id, amount_cents)


def decrement_customer_due_guarded(shop_id: int, customer_id: int, amount_cents: int) -> bool:
    """Reduce total_due only if it covers amount_cents. Returns False otherwise."""
    return _decrement_guarded(Customer, Customer.total_due_cents, shop_id, customer_id, amount_cents)


def adjust_counterparty_due(txn: Transaction, delta_cents: int) -> None:
    """
    Apply a due change to whoever owes/is owed on this transaction.

    Sales move the customer's total_due (walk-in sales have no balance);
    purchases move the vendor's total_payable. Other types carry no
    outstanding balance.
    """
    if delta_cents == 0:
        return
    if txn.type == TYPE_SALE and txn.customer_id:
        adjust_customer_due(txn.shop_id, txn.customer_id, delta_cents)
    elif txn.type == TYPE_PURCHASE and txn.vendor_id:
        adjust_vendor_payable(txn.shop_id, txn.vendor_id, delta_cents)


# =============================================================================
# REPLAY
# =============================================================================

def _positive_due():
    due = Transaction.amount_cents - Transaction.paid_amount_cents
    return case((due > 0, due), else_=0)


def recompute_customer_balances(shop_id: int, customer_id: int) -> dict:
    """Rebuild a customer's total_due/total_spent from the ledger."""
    sale_due = db.session.query(func.coalesce(func.sum(_positive_due()), 0)).filter(
        Transaction.shop_id == shop_id,
        Transaction.customer_id == customer_id,
        Transaction.type == TYPE_SALE,
        Transaction.status != STATUS_CANCELLED,
    ).scalar()

    received = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
        Transaction.shop_id == shop_id,
        Transaction.customer_id == customer_id,
        Transaction.type == TYPE_PAYMENT_RECEIVED,
    ).scalar()

    spent = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
        Transaction.shop_id == shop_id,
        Transaction.customer_id == customer_id,
        Transaction.type == TYPE_SALE,
    ).scalar()

    return {
        "total_due_cents": int(sale_due or 0) - int(received or 0),
        "total_spent_cents": int(spent or 0),
    }


def recompute_vendor_payable(shop_id: int, vendor_id: int) -> int:
    """Rebuild a vendor's total_payable from the ledger."""
    purchase_due = db.session.query(func.coalesce(func.sum(_positive_due()), 0)).filter(
        Transaction.shop_id == shop_id,
        Transaction.vendor_id == vendor_id,
        Transaction.type == TYPE_PURCHASE,
        Transaction.status != STATUS_CANCELLED,
    ).scalar()

    paid = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
        Transaction.shop_id == shop_id,
        Transaction.vendor_id == vendor_id,
        Transaction.type == TYPE_PAYMENT_MADE,
    ).scalar()

    return int(purchase_due or 0) - int(paid or 0)


def find_balance_drift(shop_id: int) -> list[BalanceDrift]:
    """Compare stored balances with replayed ones for every customer and vendor of a shop."""
    drift: list[BalanceDrift] = []

    customers = db.session.query(Customer).filter_by(shop_id=shop_id).order_by(Customer.id).all()
    for customer in customers:
        replayed = recompute_customer_balances(shop_id, customer.id)
        if customer.total_due_cents != replayed["total_due_cents"]:
            drift.append(BalanceDrift("customer", customer.id, "total_due_cents",
                                      customer.total_due_cents, replayed["total_due_cents"]))
        if customer.total_spent_cents != replayed["total_spent_cents"]:
            drift.append(BalanceDrift("customer", customer.id, "total_spent_cents",
                                      customer.total_spent_cents, replayed["total_spent_cents"]))

    vendors = db.session.query(Vendor).filter_by(shop_id=shop_id).order_by(Vendor.id).all()
    for vendor in vendors:
        replayed_payable = recompute_vendor_payable(shop_id, vendor.id)
        if vendor.total_payable_cents != replayed_payable:
            drift.append(BalanceDrift("vendor", vendor.id, "total_payable_cents",
                                      vendor.total_payable_cents, replayed_payable))

    return drift


def repair_balance_drift(shop_id: int) -> list[BalanceDrift]:
    """
    Overwrite drifted balances with their replayed values.

    Returns the drift that was repaired. Commits.
    """
    drift = find_balance_drift(shop_id)
    for item in drift:
        model = Customer if item.entity_type == "customer" else Vendor
        db.session.execute(
            update(model)
            .where(model.id == item.entity_id, model.shop_id == shop_id)
            .values({item.field: item.recomputed_cents})
            .execution_options(synchronize_session=False)
        )
        expire_cached(model, item.entity_id)
    db.session.commit()
    return drift
