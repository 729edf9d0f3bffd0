# Overview: Payment-status state machine; pure functions only.

"""
Status Deriver

Maps (amount, paid_amount, due_date, now) to a payment status:

    due = amount - paid_amount
    due <= 0                          -> Completed
    due_date set and due_date < now   -> Overdue
    otherwise                         -> Pending

Cancelled is never derived; it is only reachable through an explicit
status update. Dates are compared as calendar dates, so a transaction
due today is not overdue until tomorrow.

No I/O here: everything that writes a status calls into this module.
"""

from __future__ import annotations

from datetime import date, datetime

from lenden.time_utils import as_date


STATUS_PENDING = "Pending"
STATUS_COMPLETED = "Completed"
STATUS_CANCELLED = "Cancelled"
STATUS_OVERDUE = "Overdue"

VALID_STATUSES = [
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_OVERDUE,
]

# Statuses that still expect money to arrive
OPEN_STATUSES = {STATUS_PENDING, STATUS_OVERDUE}


def due_amount(amount: int, paid_amount: int) -> int:
    return amount - paid_amount


def derive_status(
    amount: int,
    paid_amount: int,
    due_date: date | datetime | None,
    now: date | datetime,
) -> str:
    if due_amount(amount, paid_amount) <= 0:
        return STATUS_COMPLETED
    if due_date is not None and as_date(due_date) < as_date(now):
        return STATUS_OVERDUE
    return STATUS_PENDING


def is_overdue_candidate(
    status: str,
    amount: int,
    paid_amount: int,
    due_date: date | datetime | None,
    today: date | datetime,
) -> bool:
    """True when the sweeper should move this row from Pending to Overdue."""
    return (
        status == STATUS_PENDING
        and due_date is not None
        and due_amount(amount, paid_amount) > 0
        and as_date(due_date) < as_date(today)
    )
