# Overview: Ledger Engine; records sales, purchases, payments and expenses atomically.

"""
Ledger Engine

WHY: A sale touches four things at once: the transaction row, its lines,
product stock and the customer's running balance. They must all change
together or not at all.

DESIGN PRINCIPLES:
- One operation = one database transaction, wrapped in run_with_retry()
- SQLite writers serialize on BEGIN IMMEDIATE; other engines row-lock
- Stock and balances move through atomic SQL increments
  (stock_service / balance_service), never Python read-modify-write
- Status is written by derive_status() at creation and by _reconcile()
  afterwards; nothing else assigns Transaction.status here
- Events are built inside the unit but published only after commit,
  best-effort (notification_service.publish never raises)

MONEY: every amount is integer cents. Sale amount is net of discount.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import date
from typing import Sequence

from flask import current_app
from sqlalchemy import case

from ..extensions import db
from ..models import Customer, Vendor, Service, Transaction, TransactionLine
from ..models.transactions import (
    TYPE_SALE,
    TYPE_PURCHASE,
    TYPE_PAYMENT_RECEIVED,
    TYPE_PAYMENT_MADE,
    TYPE_EXPENSE,
    VALID_TRANSACTION_TYPES,
)
from ..errors import (
    ValidationError,
    InvalidQuantity,
    InvalidStatusTransition,
    NotFound,
    InsufficientStock,
    NothingPayable,
    CannotExceedPayable,
    CannotExceedDue,
)
from ..validation import (
    LineInput,
    normalize_lines,
    coerce_amount,
    coerce_id,
    coerce_int,
    coerce_optional_id,
    coerce_payment_method,
    coerce_text,
    coerce_due_date,
    require_shop_id,
)
from lenden.time_utils import utcnow
from . import balance_service, stock_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .notification_service import (
    publish_all,
    low_stock_event,
    new_sale_event,
    payment_received_event,
)
from .status_service import (
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    VALID_STATUSES,
    OPEN_STATUSES,
    derive_status,
)


MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50


# =============================================================================
# HELPERS
# =============================================================================

def _strict_payment_guards() -> bool:
    return bool(current_app.config.get("LEDGER_STRICT_PAYMENT_GUARDS"))


def _subtotal_tolerance() -> int | None:
    return current_app.config.get("LEDGER_SUBTOTAL_TOLERANCE_CENTS")


def _get_customer(shop_id: int, customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id, shop_id=shop_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFound("Customer not found", details={"customer_id": customer_id})
    return customer


def _get_vendor(shop_id: int, vendor_id: int, *, lock: bool = False) -> Vendor:
    query = db.session.query(Vendor).filter_by(id=vendor_id, shop_id=shop_id)
    if lock:
        query = lock_for_update(query)
    vendor = query.first()
    if vendor is None:
        raise NotFound("Vendor not found", details={"vendor_id": vendor_id})
    return vendor


def _get_service(shop_id: int, service_id: int) -> Service:
    service = db.session.query(Service).filter_by(id=service_id, shop_id=shop_id).first()
    if service is None:
        raise NotFound(
            f"Service with ID {service_id} not found",
            details={"service_id": service_id},
        )
    return service


def _check_quantities(lines: Sequence[LineInput]) -> None:
    for line in lines:
        if line.quantity is None or line.quantity <= 0:
            target = line.product_id or line.service_id
            raise InvalidQuantity(
                f"Invalid quantity for item {target}. Quantity must be greater than 0.",
                details={
                    "product_id": line.product_id,
                    "service_id": line.service_id,
                    "quantity": line.quantity,
                },
            )


def _check_subtotals(lines: Sequence[LineInput]) -> None:
    tolerance = _subtotal_tolerance()
    if tolerance is None:
        return
    for index, line in enumerate(lines):
        expected = line.quantity * line.unit_price_cents
        if abs(line.subtotal_cents - expected) > tolerance:
            raise ValidationError(
                f"items[{index}].subtotal does not match quantity x unit_price",
                details={
                    "index": index,
                    "subtotal_cents": line.subtotal_cents,
                    "expected_cents": expected,
                    "tolerance_cents": tolerance,
                },
            )


def _check_discount(total_cents: int, discount_cents: int) -> None:
    if discount_cents > total_cents:
        raise ValidationError(
            "Discount cannot exceed the total amount",
            details={"total_cents": total_cents, "discount_cents": discount_cents},
        )


def _check_paid(final_amount_cents: int, paid_amount_cents: int) -> None:
    if _strict_payment_guards() and paid_amount_cents > final_amount_cents:
        raise ValidationError(
            "Paid amount cannot exceed the final amount",
            details={"final_amount_cents": final_amount_cents, "paid_amount_cents": paid_amount_cents},
        )


def _positive_amount(name: str, value) -> int:
    amount = coerce_amount(name, value)
    if amount == 0:
        raise ValidationError(f"{name} must be greater than 0", details={"field": name})
    return amount


def _new_transaction(shop_id: int, txn_type: str, **fields) -> Transaction:
    now = utcnow()
    txn = Transaction(
        shop_id=shop_id,
        type=txn_type,
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.session.add(txn)
    db.session.flush()  # Get transaction ID
    return txn


# =============================================================================
# SALES
# =============================================================================

def create_sale(
    shop_id: int,
    lines,
    paid_amount_cents: int,
    payment_method: str,
    discount_cents: int = 0,
    customer_id: int | None = None,
    customer_name: str | None = None,
    notes: str | None = None,
    due_date: date | str | None = None,
) -> int:
    """
    Record a sale: transaction, lines, stock decrements and customer balance.

    Args:
        shop_id: Tenant scope
        lines: LineInput objects or {product_id|service_id, quantity,
            unit_price, subtotal} mappings; subtotals are caller-supplied
        paid_amount_cents: Amount collected now
        payment_method: cash, card, mobile, bank, bkash or due
        discount_cents: Taken off the line total
        customer_id: Registered customer (balance is tracked)
        customer_name: Walk-in name, only used without customer_id
        notes: Free text description
        due_date: When the outstanding amount is expected

    Returns:
        New transaction ID

    Raises:
        ValidationError, InvalidQuantity, NotFound, InsufficientStock
    """
    shop_id = require_shop_id(shop_id)
    lines = normalize_lines(lines)
    paid_amount_cents = coerce_amount("paid_amount", paid_amount_cents, required=False)
    discount_cents = coerce_amount("discount", discount_cents, required=False)
    payment_method = coerce_payment_method(payment_method)
    customer_id = coerce_optional_id("customer_id", customer_id)
    customer_name = coerce_text(customer_name)
    notes = coerce_text(notes)
    due_date = coerce_due_date(due_date)

    for line in lines:
        if line.subtotal_cents is None:
            raise ValidationError("subtotal is required for sale items")
    _check_subtotals(lines)

    total_cents = sum(line.subtotal_cents for line in lines)
    _check_discount(total_cents, discount_cents)
    final_amount = total_cents - discount_cents
    _check_paid(final_amount, paid_amount_cents)
    due_amount = final_amount - paid_amount_cents

    def _op():
        begin_write()
        now = utcnow()
        status = derive_status(final_amount, paid_amount_cents, due_date, now)

        # Snapshot customer data as it is right now
        snapshot_name = customer_name
        snapshot_phone = None
        snapshot_address = None
        if customer_id:
            customer = _get_customer(shop_id, customer_id, lock=True)
            snapshot_name = customer.name
            snapshot_phone = customer.phone
            snapshot_address = customer.address

        description = notes
        if not customer_id and snapshot_name:
            description = f"Customer: {snapshot_name}" + (f" - {notes}" if notes else "")

        txn = _new_transaction(
            shop_id,
            TYPE_SALE,
            amount_cents=final_amount,
            paid_amount_cents=paid_amount_cents,
            discount_cents=discount_cents,
            payment_method=payment_method,
            customer_id=customer_id,
            customer_name_snapshot=snapshot_name,
            customer_phone_snapshot=snapshot_phone,
            customer_address_snapshot=snapshot_address,
            description=description,
            status=status,
            due_date=due_date,
        )

        # Validate every line before touching stock
        _check_quantities(lines)

        requested: "OrderedDict[int, int]" = OrderedDict()
        for line in lines:
            if line.product_id:
                requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        cost_by_product = {}
        for product_id, quantity in requested.items():
            product = stock_service.get_product_for_shop(shop_id, product_id, lock=True)
            if product.stock_quantity < quantity:
                raise InsufficientStock(
                    product_id=product.id,
                    product_name=product.name,
                    available=product.stock_quantity,
                    requested=quantity,
                )
            cost_by_product[product_id] = product.cost_price_cents

        for line in lines:
            if line.service_id:
                _get_service(shop_id, line.service_id)

        for line_number, line in enumerate(lines, start=1):
            db.session.add(TransactionLine(
                transaction_id=txn.id,
                line_number=line_number,
                product_id=line.product_id,
                service_id=line.service_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                cost_price_cents=cost_by_product.get(line.product_id, 0) if line.product_id else 0,
                subtotal_cents=line.subtotal_cents,
                created_at=now,
            ))
        db.session.flush()

        for line in lines:
            if line.product_id:
                stock_service.reserve_and_decrement(shop_id, line.product_id, line.quantity)

        if customer_id:
            balance_service.adjust_customer_spent(shop_id, customer_id, final_amount)
            if due_amount > 0:
                balance_service.adjust_customer_due(shop_id, customer_id, due_amount)

        events = [
            low_stock_event(shop_id, product)
            for product in stock_service.low_stock_products(shop_id, requested.keys(), active_only=False)
        ]
        txn_id = txn.id
        events.append(new_sale_event(shop_id, txn_id, final_amount))

        db.session.commit()
        return txn_id, events

    txn_id, events = run_with_retry(_op)
    publish_all(events)
    return txn_id


# =============================================================================
# PURCHASES
# =============================================================================

def create_purchase(
    shop_id: int,
    vendor_id: int,
    lines,
    paid_amount_cents: int,
    payment_method: str = "cash",
    discount_cents: int = 0,
    notes: str | None = None,
    due_date: date | str | None = None,
) -> int:
    """
    Record a stock purchase from a vendor.

    Subtotals are computed server-side (quantity x unit_price). Each product's
    cost_price is overwritten with the purchase unit price, and the unpaid
    part is added to the vendor's total_payable.
    """
    shop_id = require_shop_id(shop_id)
    vendor_id = coerce_id("vendor_id", vendor_id)
    lines = normalize_lines(lines, purchase=True)
    paid_amount_cents = coerce_amount("paid_amount", paid_amount_cents, required=False)
    discount_cents = coerce_amount("discount", discount_cents, required=False)
    payment_method = coerce_payment_method(payment_method or "cash")
    notes = coerce_text(notes)
    due_date = coerce_due_date(due_date)

    for index, line in enumerate(lines):
        if not line.product_id or line.service_id:
            raise ValidationError(
                f"items[{index}] must reference a product",
                details={"index": index},
            )
    _check_quantities(lines)

    total_cents = sum(line.quantity * line.unit_price_cents for line in lines)
    _check_discount(total_cents, discount_cents)
    final_amount = total_cents - discount_cents
    _check_paid(final_amount, paid_amount_cents)
    due_amount = final_amount - paid_amount_cents

    def _op():
        begin_write()
        now = utcnow()
        vendor = _get_vendor(shop_id, vendor_id, lock=True)

        for line in lines:
            stock_service.get_product_for_shop(shop_id, line.product_id, lock=True)

        txn = _new_transaction(
            shop_id,
            TYPE_PURCHASE,
            amount_cents=final_amount,
            paid_amount_cents=paid_amount_cents,
            discount_cents=discount_cents,
            payment_method=payment_method,
            vendor_id=vendor.id,
            description=notes,
            status=derive_status(final_amount, paid_amount_cents, due_date, now),
            due_date=due_date,
        )

        for line_number, line in enumerate(lines, start=1):
            db.session.add(TransactionLine(
                transaction_id=txn.id,
                line_number=line_number,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                cost_price_cents=line.unit_price_cents,
                subtotal_cents=line.quantity * line.unit_price_cents,
                created_at=now,
            ))
        db.session.flush()

        for line in lines:
            stock_service.increment(shop_id, line.product_id, line.quantity, line.unit_price_cents)

        if due_amount > 0:
            balance_service.adjust_vendor_payable(shop_id, vendor.id, due_amount)

        txn_id = txn.id
        db.session.commit()
        return txn_id

    return run_with_retry(_op)


# =============================================================================
# PAYMENTS AND EXPENSES
# =============================================================================

def receive_payment(
    shop_id: int,
    customer_id: int,
    amount_cents: int,
    method: str,
    notes: str | None = None,
) -> int:
    """
    Record money received from a customer against their total_due.

    Permissive by default: the payment may exceed total_due and leave a
    negative (credit) balance. With LEDGER_STRICT_PAYMENT_GUARDS it raises
    CannotExceedDue instead.
    """
    shop_id = require_shop_id(shop_id)
    customer_id = coerce_id("customer_id", customer_id)
    amount_cents = _positive_amount("amount", amount_cents)
    method = coerce_payment_method(method, name="method")
    notes = coerce_text(notes)

    def _op():
        begin_write()
        customer = _get_customer(shop_id, customer_id, lock=True)

        if _strict_payment_guards():
            if not balance_service.decrement_customer_due_guarded(shop_id, customer.id, amount_cents):
                db.session.refresh(customer)
                raise CannotExceedDue(
                    "Payment amount cannot exceed total due",
                    details={"total_due_cents": customer.total_due_cents, "amount_cents": amount_cents},
                )
        else:
            balance_service.adjust_customer_due(shop_id, customer.id, -amount_cents)

        txn = _new_transaction(
            shop_id,
            TYPE_PAYMENT_RECEIVED,
            amount_cents=amount_cents,
            paid_amount_cents=amount_cents,
            payment_method=method,
            customer_id=customer.id,
            customer_name_snapshot=customer.name,
            customer_phone_snapshot=customer.phone,
            customer_address_snapshot=customer.address,
            description=notes,
            status=STATUS_COMPLETED,
        )

        event = payment_received_event(shop_id, customer.name, amount_cents)
        txn_id = txn.id
        db.session.commit()
        return txn_id, [event]

    txn_id, events = run_with_retry(_op)
    publish_all(events)
    return txn_id


def make_payment(
    shop_id: int,
    vendor_id: int,
    amount_cents: int,
    method: str,
    notes: str | None = None,
) -> int:
    """
    Record money paid to a vendor against their total_payable.

    Raises:
        NothingPayable: vendor has nothing outstanding
        CannotExceedPayable: amount is more than what is outstanding
    """
    shop_id = require_shop_id(shop_id)
    vendor_id = coerce_id("vendor_id", vendor_id)
    amount_cents = _positive_amount("amount", amount_cents)
    method = coerce_payment_method(method, name="method")
    notes = coerce_text(notes)

    def _op():
        begin_write()
        vendor = _get_vendor(shop_id, vendor_id, lock=True)
        payable = vendor.total_payable_cents

        if payable <= 0:
            raise NothingPayable(
                "No payable amount for this vendor",
                details={"vendor_id": vendor.id, "total_payable_cents": payable},
            )
        if amount_cents > payable:
            raise CannotExceedPayable(
                "Payment amount cannot exceed total payable",
                details={"vendor_id": vendor.id, "total_payable_cents": payable, "amount_cents": amount_cents},
            )

        # Guarded again in SQL in case the payable moved since the read
        if not balance_service.decrement_vendor_payable_guarded(shop_id, vendor.id, amount_cents):
            raise CannotExceedPayable(
                "Payment amount cannot exceed total payable",
                details={"vendor_id": vendor.id, "amount_cents": amount_cents},
            )

        txn = _new_transaction(
            shop_id,
            TYPE_PAYMENT_MADE,
            amount_cents=amount_cents,
            paid_amount_cents=amount_cents,
            payment_method=method,
            vendor_id=vendor.id,
            description=notes,
            status=STATUS_COMPLETED,
        )
        txn_id = txn.id
        db.session.commit()
        return txn_id

    return run_with_retry(_op)


def create_expense(shop_id: int, amount_cents: int, description: str | None, payment_method: str) -> int:
    """Record a standalone expense. Description is optional; no stock or balance side effects."""
    shop_id = require_shop_id(shop_id)
    amount_cents = _positive_amount("amount", amount_cents)
    description = coerce_text(description)
    payment_method = coerce_payment_method(payment_method)

    def _op():
        begin_write()
        txn = _new_transaction(
            shop_id,
            TYPE_EXPENSE,
            amount_cents=amount_cents,
            paid_amount_cents=amount_cents,
            payment_method=payment_method,
            description=description,
            status=derive_status(amount_cents, amount_cents, None, utcnow()),
        )
        txn_id = txn.id
        db.session.commit()
        return txn_id

    return run_with_retry(_op)


# =============================================================================
# STATUS UPDATES
# =============================================================================

def _reconcile(txn: Transaction, new_status: str) -> bool:
    """
    Move txn to new_status and keep the counterparty balance in step.

    The outstanding due of a non-cancelled sale/purchase is always counted
    in the counterparty balance; a cancelled one never is. Returns False
    for a same-status no-op.
    """
    old_status = txn.status
    if new_status == old_status:
        return False

    outstanding = max(0, txn.due_amount_cents)

    if new_status == STATUS_COMPLETED:
        if outstanding > 0:
            # A cancellation already released the due
            if old_status != STATUS_CANCELLED:
                balance_service.adjust_counterparty_due(txn, -outstanding)
            txn.paid_amount_cents = txn.amount_cents

    elif new_status == STATUS_CANCELLED:
        if outstanding > 0:
            balance_service.adjust_counterparty_due(txn, -outstanding)

    else:
        if outstanding <= 0:
            raise InvalidStatusTransition(
                f"Cannot move a fully paid transaction to {new_status}",
                details={"transaction_id": txn.id, "from": old_status, "to": new_status},
            )
        if old_status == STATUS_CANCELLED:
            balance_service.adjust_counterparty_due(txn, outstanding)

    txn.status = new_status
    txn.updated_at = utcnow()
    return True


def update_status(shop_id: int, transaction_id: int, new_status: str) -> dict:
    """
    Explicitly override a transaction's status.

    Returns:
        The updated transaction as a dict

    Raises:
        InvalidStatusTransition: unknown status, or Pending/Overdue with nothing due
        NotFound: transaction not in this shop
    """
    shop_id = require_shop_id(shop_id)
    transaction_id = coerce_id("transaction_id", transaction_id)
    if new_status not in VALID_STATUSES:
        raise InvalidStatusTransition(
            f"Invalid status: {new_status}. Must be one of {VALID_STATUSES}",
            details={"status": new_status, "allowed": VALID_STATUSES},
        )

    def _op():
        begin_write()
        txn = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id, shop_id=shop_id)
        ).first()
        if txn is None:
            raise NotFound("Transaction not found", details={"transaction_id": transaction_id})

        if _reconcile(txn, new_status):
            db.session.commit()
        else:
            db.session.rollback()
        return _transaction_dict(shop_id, transaction_id)

    return run_with_retry(_op)


# =============================================================================
# READ SIDE
# =============================================================================

def _int_or_default(name: str, value, default: int) -> int:
    if value is None or value == "":
        return default
    return coerce_int(name, value)


def _serialize(txn: Transaction) -> dict:
    data = txn.to_dict()
    customer = txn.customer
    data["customer_name"] = txn.customer_name_snapshot or (customer.name if customer else None)
    data["customer_phone"] = txn.customer_phone_snapshot or (customer.phone if customer else None)
    data["customer_address"] = txn.customer_address_snapshot or (customer.address if customer else None)
    data["vendor_name"] = txn.vendor.name if txn.vendor else None
    return data


def _transaction_dict(shop_id: int, transaction_id: int) -> dict:
    txn = db.session.query(Transaction).filter_by(id=transaction_id, shop_id=shop_id).first()
    if txn is None:
        raise NotFound("Transaction not found", details={"transaction_id": transaction_id})
    return _serialize(txn)


def get_transaction(shop_id: int, transaction_id: int) -> dict:
    """Transaction detail with its lines. Customer fields fall back from snapshot to live record."""
    shop_id = require_shop_id(shop_id)
    transaction_id = coerce_id("transaction_id", transaction_id)

    data = _transaction_dict(shop_id, transaction_id)
    lines = (
        db.session.query(TransactionLine)
        .filter_by(transaction_id=transaction_id)
        .order_by(TransactionLine.line_number)
        .all()
    )
    data["lines"] = [line.to_dict() for line in lines]
    return data


def list_transactions(
    shop_id: int,
    type: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> dict:
    """
    Paginated transactions of a shop.

    Open (Pending/Overdue) transactions come first, then newest first.
    limit is capped at MAX_PAGE_SIZE.
    """
    shop_id = require_shop_id(shop_id)
    limit = max(1, min(_int_or_default("limit", limit, DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE))
    offset = max(0, _int_or_default("offset", offset, 0))

    query = db.session.query(Transaction).filter(Transaction.shop_id == shop_id)
    if type:
        if type not in VALID_TRANSACTION_TYPES:
            raise ValidationError(
                f"Invalid type: {type}. Must be one of {VALID_TRANSACTION_TYPES}",
                details={"type": type, "allowed": VALID_TRANSACTION_TYPES},
            )
        query = query.filter(Transaction.type == type)

    total = query.count()
    open_first = case((Transaction.status.in_(sorted(OPEN_STATUSES)), 0), else_=1)
    rows = (
        query.order_by(open_first, Transaction.created_at.desc(), Transaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    return {
        "transactions": [_serialize(txn) for txn in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(rows) < total,
    }
