# Overview: Fire-and-forget publication of ledger events to the notification sink.

"""
Notification Dispatcher contract

The ledger engine and the overdue sweeper hand LedgerEvent objects to
publish() AFTER their unit of work has committed. publish() never raises:
a failing sink is logged and swallowed, and the committed ledger mutation
stands.

The sink is any callable taking a LedgerEvent. It is stored per Flask app
(app.extensions["lenden.event_sink"]); create_app() installs
store_notification, which writes an in-app Notification row. Tests and
other consumers (email, push) install their own with set_event_sink().

EVENT TYPES:
- low_stock:        {product_id, product_name, current_stock, min_stock}
- new_sale:         {transaction_id, amount}
- overdue_payment:  {transaction_id, customer_name, amount, due_date}
- payment_received: {customer_name, amount}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Callable, Iterable

from flask import current_app

from ..extensions import db
from ..models import Notification


EVENT_LOW_STOCK = "low_stock"
EVENT_NEW_SALE = "new_sale"
EVENT_OVERDUE_PAYMENT = "overdue_payment"
EVENT_PAYMENT_RECEIVED = "payment_received"

VALID_EVENT_TYPES = [
    EVENT_LOW_STOCK,
    EVENT_NEW_SALE,
    EVENT_OVERDUE_PAYMENT,
    EVENT_PAYMENT_RECEIVED,
]

_SINK_KEY = "lenden.event_sink"


@dataclass(frozen=True)
class LedgerEvent:
    type: str
    shop_id: int
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type, "shop_id": self.shop_id, **self.payload}


EventSink = Callable[[LedgerEvent], None]


def set_event_sink(app, sink: EventSink | None) -> None:
    app.extensions[_SINK_KEY] = sink


def get_event_sink() -> EventSink | None:
    return current_app.extensions.get(_SINK_KEY)


def publish(event: LedgerEvent) -> bool:
    """
    Hand one event to the sink. Returns False if there is no sink or it failed.

    Never raises; never retries.
    """
    sink = get_event_sink()
    if sink is None:
        return False
    try:
        sink(event)
        return True
    except Exception:
        current_app.logger.exception(
            "Failed to publish %s event for shop %s", event.type, event.shop_id
        )
        return False


def publish_all(events: Iterable[LedgerEvent]) -> int:
    """Publish events in order; returns how many were delivered."""
    return sum(1 for event in events if publish(event))


# =============================================================================
# EVENT BUILDERS
# =============================================================================

def low_stock_event(shop_id: int, product) -> LedgerEvent:
    return LedgerEvent(
        type=EVENT_LOW_STOCK,
        shop_id=shop_id,
        payload={
            "product_id": product.id,
            "product_name": product.name,
            "current_stock": product.stock_quantity,
            "min_stock": product.min_stock_level,
        },
    )


def new_sale_event(shop_id: int, transaction_id: int, amount_cents: int) -> LedgerEvent:
    return LedgerEvent(
        type=EVENT_NEW_SALE,
        shop_id=shop_id,
        payload={"transaction_id": transaction_id, "amount": amount_cents},
    )


def overdue_payment_event(shop_id: int, transaction_id: int, customer_name: str,
                          amount_cents: int, due_date) -> LedgerEvent:
    return LedgerEvent(
        type=EVENT_OVERDUE_PAYMENT,
        shop_id=shop_id,
        payload={
            "transaction_id": transaction_id,
            "customer_name": customer_name,
            "amount": amount_cents,
            "due_date": due_date.isoformat() if due_date else None,
        },
    )


def payment_received_event(shop_id: int, customer_name: str, amount_cents: int) -> LedgerEvent:
    return LedgerEvent(
        type=EVENT_PAYMENT_RECEIVED,
        shop_id=shop_id,
        payload={"customer_name": customer_name, "amount": amount_cents},
    )


# =============================================================================
# DEFAULT SINK: IN-APP NOTIFICATIONS
# =============================================================================

def _money(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def _render(event: LedgerEvent) -> tuple[str, str, str | None]:
    p = event.payload
    if event.type == EVENT_LOW_STOCK:
        return (
            f"Low Stock Alert: {p['product_name']}",
            f"{p['product_name']} is running low. Current: {p['current_stock']}, Minimum: {p['min_stock']}",
            "/products?low_stock=true",
        )
    if event.type == EVENT_NEW_SALE:
        return (
            "New Sale Completed",
            f"Sale of {_money(p['amount'])} completed successfully.",
            "/transactions",
        )
    if event.type == EVENT_OVERDUE_PAYMENT:
        return (
            "Overdue Payment Alert",
            f"Payment from {p['customer_name']} was due {p['due_date']}. Amount: {_money(p['amount'])}",
            f"/transactions?id={p['transaction_id']}",
        )
    if event.type == EVENT_PAYMENT_RECEIVED:
        return (
            "Payment Received",
            f"Received {_money(p['amount'])} from {p['customer_name']}",
            "/transactions",
        )
    raise ValueError(f"Unknown event type: {event.type}")


def store_notification(event: LedgerEvent) -> None:
    """Persist an event as an in-app Notification row (own commit)."""
    if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
        return

    title, message, link = _render(event)
    try:
        db.session.add(Notification(
            shop_id=event.shop_id,
            type=event.type,
            title=title,
            message=message,
            link=link,
            data=json.dumps(event.payload),
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
