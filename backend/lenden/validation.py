from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from lenden.errors import ValidationError
from lenden.time_utils import parse_iso_date


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999

PAYMENT_METHODS = ["cash", "card", "mobile", "bank", "bkash", "due"]


@dataclass(frozen=True)
class LineInput:
    """One requested sale/purchase line. Exactly one of product_id/service_id."""
    product_id: int | None
    service_id: int | None
    quantity: int
    unit_price_cents: int
    subtotal_cents: int | None = None


@dataclass(frozen=True)
class SaleRequest:
    lines: tuple[LineInput, ...]
    paid_amount_cents: int
    payment_method: str
    discount_cents: int = 0
    customer_id: int | None = None
    customer_name: str | None = None
    notes: str | None = None
    due_date: date | None = None


@dataclass(frozen=True)
class PurchaseRequest:
    vendor_id: int
    lines: tuple[LineInput, ...]
    paid_amount_cents: int
    payment_method: str = "cash"
    discount_cents: int = 0
    notes: str | None = None
    due_date: date | None = None


@dataclass(frozen=True)
class PaymentRequest:
    counterparty_id: int
    amount_cents: int
    method: str
    notes: str | None = None


@dataclass(frozen=True)
class ExpenseRequest:
    amount_cents: int
    description: str | None
    payment_method: str


# =============================================================================
# COERCION
# =============================================================================

def coerce_int(name: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer", details={"field": name})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(
                f"{name} must be a plain integer (scientific notation not allowed)",
                details={"field": name},
            )
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)", details={"field": name})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", details={"field": name})
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal", details={"field": name})
    raise ValidationError(f"{name} must be an integer", details={"field": name})


def coerce_amount(name: str, value: Any, *, required: bool = True, default: int = 0) -> int:
    """Integer cents in [0, MAX_AMOUNT_CENTS]."""
    if value is None:
        if required:
            raise ValidationError(f"{name} is required", details={"field": name})
        return default
    amount = coerce_int(name, value)
    if amount < 0:
        raise ValidationError(f"{name} must be >= 0", details={"field": name, "value": amount})
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(
            f"{name} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})",
            details={"field": name, "value": amount},
        )
    return amount


def coerce_optional_id(name: str, value: Any) -> int | None:
    if value is None or value == "":
        return None
    ident = coerce_int(name, value)
    if ident <= 0:
        raise ValidationError(f"{name} must be a positive integer", details={"field": name})
    return ident


def coerce_id(name: str, value: Any) -> int:
    ident = coerce_optional_id(name, value)
    if ident is None:
        raise ValidationError(f"{name} is required", details={"field": name})
    return ident


def coerce_payment_method(value: Any, *, name: str = "payment_method") -> str:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{name} is required", details={"field": name})
    method = str(value).strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid {name}: {value}. Must be one of {PAYMENT_METHODS}",
            details={"field": name, "allowed": PAYMENT_METHODS},
        )
    return method


def coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def coerce_due_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError("due_date must be an ISO-8601 date", details={"field": "due_date"})
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError("due_date must be an ISO-8601 date", details={"field": "due_date"})


def require_shop_id(shop_id: Any) -> int:
    if shop_id is None or shop_id == "":
        raise ValidationError("Shop ID is required")
    try:
        return coerce_id("shop_id", shop_id)
    except ValidationError:
        raise ValidationError("Invalid shop ID", details={"shop_id": shop_id})


# =============================================================================
# LINES
# =============================================================================

def _line_from_mapping(raw: Mapping, index: int, *, purchase: bool) -> LineInput:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"items[{index}] must be an object", details={"index": index})

    product_id = coerce_optional_id("product_id", raw.get("product_id"))
    service_id = None if purchase else coerce_optional_id("service_id", raw.get("service_id"))

    if purchase and product_id is None:
        raise ValidationError(f"items[{index}].product_id is required", details={"index": index})
    if (product_id is None) == (service_id is None):
        raise ValidationError(
            f"items[{index}] must reference exactly one of product_id or service_id",
            details={"index": index},
        )

    # Quantity sign is checked by the ledger (InvalidQuantity); here only the type
    quantity = coerce_int("quantity", raw.get("quantity")) if raw.get("quantity") is not None else None
    if quantity is None:
        raise ValidationError(f"items[{index}].quantity is required", details={"index": index})

    unit_price = coerce_amount("unit_price", raw.get("unit_price", raw.get("unit_price_cents")))

    subtotal = None
    if not purchase:
        subtotal = coerce_amount("subtotal", raw.get("subtotal", raw.get("subtotal_cents")))

    return LineInput(
        product_id=product_id,
        service_id=service_id,
        quantity=quantity,
        unit_price_cents=unit_price,
        subtotal_cents=subtotal,
    )


def normalize_lines(items: Any, *, purchase: bool = False) -> tuple[LineInput, ...]:
    """Accept LineInput objects or JSON-style mappings; returns a non-empty tuple."""
    if not items or not isinstance(items, (list, tuple)):
        raise ValidationError("At least one item is required")

    lines = []
    for index, item in enumerate(items):
        if isinstance(item, LineInput):
            lines.append(item)
        else:
            lines.append(_line_from_mapping(item, index, purchase=purchase))
    return tuple(lines)


# =============================================================================
# REQUEST PARSERS
# =============================================================================

def _payload(data: Any) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def parse_sale_request(data: Any) -> SaleRequest:
    data = _payload(data)
    return SaleRequest(
        lines=normalize_lines(data.get("items")),
        paid_amount_cents=coerce_amount("paid_amount", data.get("paid_amount"), required=False),
        payment_method=coerce_payment_method(data.get("payment_method")),
        discount_cents=coerce_amount("discount", data.get("discount"), required=False),
        customer_id=coerce_optional_id("customer_id", data.get("customer_id")),
        customer_name=coerce_text(data.get("customer_name")),
        notes=coerce_text(data.get("notes")),
        due_date=coerce_due_date(data.get("due_date")),
    )


def parse_purchase_request(data: Any) -> PurchaseRequest:
    data = _payload(data)
    method = data.get("payment_method") or "cash"
    return PurchaseRequest(
        vendor_id=coerce_id("vendor_id", data.get("vendor_id")),
        lines=normalize_lines(data.get("items"), purchase=True),
        paid_amount_cents=coerce_amount("paid_amount", data.get("paid_amount"), required=False),
        payment_method=coerce_payment_method(method),
        discount_cents=coerce_amount("discount", data.get("discount"), required=False),
        notes=coerce_text(data.get("notes")),
        due_date=coerce_due_date(data.get("due_date")),
    )


def _parse_payment(data: Any, id_field: str) -> PaymentRequest:
    data = _payload(data)
    amount = coerce_amount("amount", data.get("amount"))
    if amount == 0:
        raise ValidationError("amount must be greater than 0", details={"field": "amount"})
    return PaymentRequest(
        counterparty_id=coerce_id(id_field, data.get(id_field)),
        amount_cents=amount,
        method=coerce_payment_method(data.get("method"), name="method"),
        notes=coerce_text(data.get("notes")),
    )


def parse_payment_received_request(data: Any) -> PaymentRequest:
    return _parse_payment(data, "customer_id")


def parse_payment_made_request(data: Any) -> PaymentRequest:
    return _parse_payment(data, "vendor_id")


def parse_expense_request(data: Any) -> ExpenseRequest:
    data = _payload(data)
    return ExpenseRequest(
        amount_cents=coerce_amount("amount", data.get("amount")),
        description=coerce_text(data.get("description")),
        payment_method=coerce_payment_method(data.get("payment_method")),
    )


def parse_status_request(data: Any) -> str:
    data = _payload(data)
    status = coerce_text(data.get("status"))
    if not status:
        raise ValidationError("status is required", details={"field": "status"})
    return status
