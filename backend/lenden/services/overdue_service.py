# Overview: Overdue Sweeper; moves elapsed Pending transactions to Overdue.

"""
Overdue Sweeper

Run periodically by an external scheduler (`flask ledger sweep-overdue`).

For every transaction with
    due_date < today AND status = Pending AND amount - paid_amount > 0
the sweeper flips status to Overdue and, once that flip is committed,
emits an overdue_payment event.

Each row is its own unit of work: a failure on one row is logged and
skipped, and never undoes flips already committed for other rows. The
row is re-checked under lock before flipping, so a payment or status
update that raced the candidate scan is respected. Running the sweep
twice for the same day changes nothing the second time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Transaction
from ..validation import require_shop_id
from lenden.time_utils import utc_today, utcnow, as_date
from .concurrency import begin_write, lock_for_update, run_with_retry
from .notification_service import publish, overdue_payment_event
from .status_service import (
    STATUS_PENDING,
    STATUS_OVERDUE,
    OPEN_STATUSES,
    is_overdue_candidate,
)


WALK_IN_CUSTOMER = "Walk-in Customer"


@dataclass
class SweepResult:
    examined: int = 0
    transitioned: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "examined": self.examined,
            "transitioned": self.transitioned,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _customer_name(txn: Transaction) -> str:
    if txn.customer_name_snapshot:
        return txn.customer_name_snapshot
    if txn.customer is not None and txn.customer.name:
        return txn.customer.name
    return WALK_IN_CUSTOMER


def _candidate_ids(today: date) -> list[int]:
    rows = (
        db.session.query(Transaction.id)
        .filter(
            Transaction.due_date.isnot(None),
            Transaction.due_date < today,
            Transaction.status == STATUS_PENDING,
            Transaction.amount_cents - Transaction.paid_amount_cents > 0,
        )
        .order_by(Transaction.id)
        .all()
    )
    return [row[0] for row in rows]


def _flip_one(transaction_id: int, today: date):
    """Flip one row inside its own unit. Returns the event to publish, or None if skipped."""
    def _op():
        begin_write()
        txn = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id)
        ).first()

        if txn is None or not is_overdue_candidate(
            txn.status, txn.amount_cents, txn.paid_amount_cents, txn.due_date, today
        ):
            db.session.rollback()
            return None

        txn.status = STATUS_OVERDUE
        txn.updated_at = utcnow()
        event = overdue_payment_event(
            shop_id=txn.shop_id,
            transaction_id=txn.id,
            customer_name=_customer_name(txn),
            amount_cents=txn.due_amount_cents,
            due_date=txn.due_date,
        )
        db.session.commit()
        return event

    return run_with_retry(_op)


def sweep_overdue_transactions(today: date | None = None) -> SweepResult:
    """
    Transition every elapsed Pending transaction (all shops) to Overdue.

    Args:
        today: Reference date, defaults to the current UTC date

    Returns:
        SweepResult with examined / transitioned / skipped / failed counts
    """
    today = as_date(today) if today is not None else utc_today()
    result = SweepResult()

    candidate_ids = _candidate_ids(today)
    # Release the read transaction before the per-row write units
    db.session.rollback()

    for transaction_id in candidate_ids:
        result.examined += 1
        try:
            event = _flip_one(transaction_id, today)
        except Exception:
            current_app.logger.exception("Overdue sweep failed for transaction %s", transaction_id)
            result.failed += 1
            continue

        if event is None:
            result.skipped += 1
            continue

        result.transitioned += 1
        publish(event)

    current_app.logger.info(
        "Overdue sweep for %s: examined=%d transitioned=%d skipped=%d failed=%d",
        today.isoformat(), result.examined, result.transitioned, result.skipped, result.failed,
    )
    return result


# =============================================================================
# READ SIDE
# =============================================================================

def _overdue_query(shop_id: int, today: date):
    return db.session.query(Transaction).filter(
        Transaction.shop_id == shop_id,
        Transaction.due_date.isnot(None),
        Transaction.due_date < today,
        Transaction.status.in_(sorted(OPEN_STATUSES)),
        Transaction.amount_cents - Transaction.paid_amount_cents > 0,
    )


def get_overdue_transactions(shop_id: int, today: date | None = None) -> list[dict]:
    """
    Pending-or-Overdue transactions of a shop whose due date has passed.

    Does not depend on the sweeper having run. Oldest due date first.
    """
    shop_id = require_shop_id(shop_id)
    today = as_date(today) if today is not None else utc_today()

    rows = _overdue_query(shop_id, today).order_by(Transaction.due_date.asc(), Transaction.id.asc()).all()

    items = []
    for txn in rows:
        data = txn.to_dict()
        data["customer_name"] = _customer_name(txn)
        data["days_overdue"] = (today - txn.due_date).days
        items.append(data)
    return items


def get_overdue_count(shop_id: int, today: date | None = None) -> int:
    shop_id = require_shop_id(shop_id)
    today = as_date(today) if today is not None else utc_today()
    return _overdue_query(shop_id, today).with_entities(func.count(Transaction.id)).scalar() or 0
