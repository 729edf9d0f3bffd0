# Overview: Flask API routes for the ledger; parses input and returns JSON responses.

# backend/lenden/routes/transactions.py
"""
Transaction API routes.

Shop scope comes from the X-Shop-Id header, set by the authentication
layer in front of this service. Amounts are integer cents on the wire.
"""

from functools import wraps

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, ValidationError
from ..services import ledger_service, overdue_service
from ..validation import (
    require_shop_id,
    parse_sale_request,
    parse_purchase_request,
    parse_payment_received_request,
    parse_payment_made_request,
    parse_expense_request,
    parse_status_request,
)


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def require_shop_context(f):
    """
    Establish the tenant context.

    Sets g.shop_id from the X-Shop-Id header. Returns 400 if it is
    missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.shop_id = require_shop_id(request.headers.get("X-Shop-Id"))
        except ValidationError as e:
            return jsonify(e.to_dict()), e.http_status
        return f(*args, **kwargs)

    return decorated_function


def _error_response(e: LedgerError):
    return jsonify(e.to_dict()), e.http_status


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR", "details": {}}), 500


@transactions_bp.post("/sale")
@require_shop_context
def create_sale_route():
    """Record a sale. Returns 201 with the new transaction id."""
    try:
        req = parse_sale_request(request.get_json(silent=True))
        transaction_id = ledger_service.create_sale(
            g.shop_id,
            req.lines,
            req.paid_amount_cents,
            req.payment_method,
            discount_cents=req.discount_cents,
            customer_id=req.customer_id,
            customer_name=req.customer_name,
            notes=req.notes,
            due_date=req.due_date,
        )
        return jsonify({"message": "Sale completed successfully", "transaction_id": transaction_id}), 201

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to create sale")


@transactions_bp.post("/purchase")
@require_shop_context
def create_purchase_route():
    try:
        req = parse_purchase_request(request.get_json(silent=True))
        transaction_id = ledger_service.create_purchase(
            g.shop_id,
            req.vendor_id,
            req.lines,
            req.paid_amount_cents,
            payment_method=req.payment_method,
            discount_cents=req.discount_cents,
            notes=req.notes,
            due_date=req.due_date,
        )
        return jsonify({"message": "Purchase recorded successfully", "transaction_id": transaction_id}), 201

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to create purchase")


@transactions_bp.post("/payment-received")
@require_shop_context
def receive_payment_route():
    try:
        req = parse_payment_received_request(request.get_json(silent=True))
        transaction_id = ledger_service.receive_payment(
            g.shop_id, req.counterparty_id, req.amount_cents, req.method, notes=req.notes,
        )
        return jsonify({"message": "Payment received successfully", "transaction_id": transaction_id}), 201

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to receive payment")


@transactions_bp.post("/payment-made")
@require_shop_context
def make_payment_route():
    try:
        req = parse_payment_made_request(request.get_json(silent=True))
        transaction_id = ledger_service.make_payment(
            g.shop_id, req.counterparty_id, req.amount_cents, req.method, notes=req.notes,
        )
        return jsonify({"message": "Payment made successfully", "transaction_id": transaction_id}), 201

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to make payment")


@transactions_bp.post("/expense")
@require_shop_context
def create_expense_route():
    try:
        req = parse_expense_request(request.get_json(silent=True))
        transaction_id = ledger_service.create_expense(
            g.shop_id, req.amount_cents, req.description, req.payment_method,
        )
        return jsonify({"message": "Expense recorded successfully", "transaction_id": transaction_id}), 201

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to create expense")


@transactions_bp.put("/<int:transaction_id>/status")
@require_shop_context
def update_status_route(transaction_id: int):
    try:
        status = parse_status_request(request.get_json(silent=True))
        transaction = ledger_service.update_status(g.shop_id, transaction_id, status)
        return jsonify({"transaction": transaction}), 200

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to update transaction status")


@transactions_bp.get("/", strict_slashes=False)
@require_shop_context
def list_transactions_route():
    """
    List transactions.

    Query params:
        type: sale, purchase, payment_received, payment_made or expense
        limit: page size (max 100, default 50)
        offset: rows to skip
    """
    try:
        result = ledger_service.list_transactions(
            g.shop_id,
            type=request.args.get("type") or None,
            limit=request.args.get("limit"),
            offset=request.args.get("offset"),
        )
        return jsonify(result), 200

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to list transactions")


@transactions_bp.get("/overdue")
@require_shop_context
def list_overdue_route():
    try:
        transactions = overdue_service.get_overdue_transactions(g.shop_id)
        return jsonify({"transactions": transactions, "count": len(transactions)}), 200

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to list overdue transactions")


@transactions_bp.get("/<int:transaction_id>")
@require_shop_context
def get_transaction_route(transaction_id: int):
    try:
        transaction = ledger_service.get_transaction(g.shop_id, transaction_id)
        return jsonify({"transaction": transaction}), 200

    except LedgerError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to get transaction")
