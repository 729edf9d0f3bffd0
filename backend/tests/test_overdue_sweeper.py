# Overview: Pytest coverage for the overdue sweep and overdue listings.

from datetime import timedelta

from lenden.models import Transaction, Notification
from lenden.services import ledger_service, overdue_service
from lenden.services.notification_service import EVENT_OVERDUE_PAYMENT
from lenden.services.status_service import STATUS_PENDING, STATUS_OVERDUE, STATUS_CANCELLED, STATUS_COMPLETED
from lenden.time_utils import utc_today

from conftest import product_line


def _sale_due_today(shop, product, paid, **kwargs):
    """Sale created Pending with due_date = today; a sweep run for tomorrow finds it elapsed."""
    return ledger_service.create_sale(
        shop.id, [product_line(product, 5)], paid, "cash", due_date=utc_today(), **kwargs,
    )


class TestSweepOverdue:

    def test_elapsed_pending_sale_becomes_overdue(self, db_session, shop_a, product_a, customer_a, published_events):
        txn_id = _sale_due_today(shop_a, product_a, 200, customer_id=customer_a.id)
        assert db_session.get(Transaction, txn_id).status == STATUS_PENDING
        published_events.clear()

        result = overdue_service.sweep_overdue_transactions(utc_today() + timedelta(days=1))

        assert result.transitioned == 1
        assert result.examined == 1
        assert db_session.get(Transaction, txn_id).status == STATUS_OVERDUE

        assert len(published_events) == 1
        event = published_events[0]
        assert event.type == EVENT_OVERDUE_PAYMENT
        assert event.shop_id == shop_a.id
        assert event.payload["transaction_id"] == txn_id
        assert event.payload["amount"] == 300
        assert event.payload["customer_name"] == "Customer C"
        assert event.payload["due_date"] == utc_today().isoformat()

    def test_sweep_is_idempotent(self, db_session, shop_a, product_a, published_events):
        _sale_due_today(shop_a, product_a, 100)
        tomorrow = utc_today() + timedelta(days=1)
        published_events.clear()

        first = overdue_service.sweep_overdue_transactions(tomorrow)
        second = overdue_service.sweep_overdue_transactions(tomorrow)

        assert first.transitioned == 1
        assert second.transitioned == 0
        assert second.examined == 0
        assert len(published_events) == 1

    def test_not_yet_due_is_untouched(self, db_session, shop_a, product_a, published_events):
        txn_id = _sale_due_today(shop_a, product_a, 100)

        result = overdue_service.sweep_overdue_transactions(utc_today())

        assert result.transitioned == 0
        assert db_session.get(Transaction, txn_id).status == STATUS_PENDING

    def test_walk_in_name_fallbacks(self, db_session, shop_a, product_a, published_events):
        named = _sale_due_today(shop_a, product_a, 100, customer_name="Jamal")
        anonymous = ledger_service.create_sale(
            shop_a.id, [product_line(product_a, 1)], 0, "due", due_date=utc_today(),
        )
        published_events.clear()

        overdue_service.sweep_overdue_transactions(utc_today() + timedelta(days=1))

        names = {e.payload["transaction_id"]: e.payload["customer_name"] for e in published_events}
        assert names == {named: "Jamal", anonymous: "Walk-in Customer"}

    def test_cancelled_and_completed_are_skipped(self, db_session, shop_a, product_a, published_events):
        cancelled = _sale_due_today(shop_a, product_a, 100)
        completed = ledger_service.create_sale(
            shop_a.id, [product_line(product_a, 1)], 100, "cash", due_date=utc_today(),
        )
        ledger_service.update_status(shop_a.id, cancelled, STATUS_CANCELLED)
        published_events.clear()

        result = overdue_service.sweep_overdue_transactions(utc_today() + timedelta(days=1))

        assert result.transitioned == 0
        assert published_events == []
        assert db_session.get(Transaction, cancelled).status == STATUS_CANCELLED
        assert db_session.get(Transaction, completed).status == STATUS_COMPLETED

    def test_sweep_covers_all_shops(self, db_session, shop_a, shop_b, product_a, product_b, published_events):
        _sale_due_today(shop_a, product_a, 100)
        _sale_due_today(shop_b, product_b, 100)
        published_events.clear()

        result = overdue_service.sweep_overdue_transactions(utc_today() + timedelta(days=1))

        assert result.transitioned == 2
        assert {e.shop_id for e in published_events} == {shop_a.id, shop_b.id}

    def test_failing_sink_keeps_transition(self, app, db_session, shop_a, product_a):
        from lenden.services.notification_service import set_event_sink, store_notification

        txn_id = _sale_due_today(shop_a, product_a, 100)

        def broken_sink(event):
            raise RuntimeError("sink down")

        set_event_sink(app, broken_sink)
        try:
            result = overdue_service.sweep_overdue_transactions(utc_today() + timedelta(days=1))
        finally:
            set_event_sink(app, store_notification)

        assert result.transitioned == 1
        assert db_session.get(Transaction, txn_id).status == STATUS_OVERDUE

    def test_default_sink_stores_overdue_notification(self, db_session, shop_a, product_a):
        _sale_due_today(shop_a, product_a, 100)

        overdue_service.sweep_overdue_transactions(utc_today() + timedelta(days=1))

        row = db_session.query(Notification).filter_by(type=EVENT_OVERDUE_PAYMENT).one()
        assert row.title == "Overdue Payment Alert"
        assert "Amount: 4.00" in row.message


class TestOverdueListing:

    def test_listing_includes_pending_and_overdue(self, db_session, shop_a, shop_b, product_a, product_b, published_events):
        past = utc_today() - timedelta(days=3)
        created_overdue = ledger_service.create_sale(
            shop_a.id, [product_line(product_a, 2)], 0, "due", due_date=past,
        )
        _sale_due_today(shop_a, product_a, 100)
        _sale_due_today(shop_b, product_b, 100)

        items = overdue_service.get_overdue_transactions(shop_a.id)

        assert [item["id"] for item in items] == [created_overdue]
        assert items[0]["days_overdue"] == 3
        assert items[0]["customer_name"] == "Walk-in Customer"
        assert db_session.get(Transaction, created_overdue).status == STATUS_OVERDUE

        tomorrow = utc_today() + timedelta(days=1)
        assert overdue_service.get_overdue_count(shop_a.id, today=tomorrow) == 2
        assert overdue_service.get_overdue_count(shop_b.id, today=tomorrow) == 1
