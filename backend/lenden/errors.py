# Overview: Typed ledger errors with stable machine-readable codes.

"""
Ledger error taxonomy.

Every failure raised by the ledger services is a LedgerError carrying:
- a human-readable message (str(exc))
- a stable `code` that callers and API clients can match on
- structured `details` (never parsed out of the message)
- the HTTP status the routes map it to

The unit of work is always rolled back before one of these reaches a caller.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger failures."""
    code = "LEDGER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(LedgerError, ValueError):
    """400-level input problem, rejected before anything is written."""
    code = "VALIDATION_ERROR"


class InvalidQuantity(ValidationError):
    code = "INVALID_QUANTITY"


class InvalidStatusTransition(ValidationError):
    code = "INVALID_STATUS_TRANSITION"


class NotFound(LedgerError):
    """Referenced row is absent or belongs to another shop."""
    code = "NOT_FOUND"
    http_status = 404


class InsufficientStock(LedgerError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class NothingPayable(LedgerError):
    code = "NOTHING_PAYABLE"
    http_status = 409


class CannotExceedPayable(LedgerError):
    code = "CANNOT_EXCEED_PAYABLE"
    http_status = 409


class CannotExceedDue(LedgerError):
    code = "CANNOT_EXCEED_DUE"
    http_status = 409


class InfrastructureError(LedgerError):
    """Storage unavailable; safe for the caller to retry the whole operation."""
    code = "INFRASTRUCTURE_ERROR"
    http_status = 503
