# Overview: Pytest coverage for the flask system / flask ledger commands.

from datetime import timedelta

from lenden.models import Shop, Product, Customer, Transaction
from lenden.services import ledger_service
from lenden.services.status_service import STATUS_OVERDUE
from lenden.time_utils import utc_today

from conftest import product_line


class TestSystemCommands:

    def test_seed_demo_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=['system', 'seed-demo', '--shop-code', 'SEED'])
        second = runner.invoke(args=['system', 'seed-demo', '--shop-code', 'SEED'])

        assert first.exit_code == 0, first.output
        assert 'Created demo shop' in first.output
        assert 'Using existing shop' in second.output
        shop = db_session.query(Shop).filter_by(code='SEED').one()
        assert db_session.query(Product).filter_by(shop_id=shop.id).count() == 3


class TestLedgerCommands:

    def test_low_stock_lists_products_at_minimum(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=['system', 'seed-demo', '--shop-code', 'LOW'])
        shop = db_session.query(Shop).filter_by(code='LOW').one()

        result = runner.invoke(args=['ledger', 'low-stock', '--shop-id', str(shop.id)])

        assert result.exit_code == 0, result.output
        assert 'Sugar 1kg' in result.output
        assert 'Rice 5kg' not in result.output
        assert 'Total: 1 products' in result.output

    def test_sweep_overdue_with_reference_date(self, app, db_session, shop_a, product_a, published_events):
        txn_id = ledger_service.create_sale(
            shop_a.id, [product_line(product_a, 2)], 0, "due", due_date=utc_today(),
        )
        tomorrow = (utc_today() + timedelta(days=1)).isoformat()

        result = app.test_cli_runner().invoke(args=['ledger', 'sweep-overdue', '--today', tomorrow])

        assert result.exit_code == 0, result.output
        assert 'transitioned 1' in result.output
        db_session.expire_all()
        assert db_session.get(Transaction, txn_id).status == STATUS_OVERDUE

    def test_sweep_overdue_rejects_bad_date(self, app, db_session):
        result = app.test_cli_runner().invoke(args=['ledger', 'sweep-overdue', '--today', '31/01/2026'])

        assert result.exit_code != 0
        assert 'YYYY-MM-DD' in result.output

    def test_check_balances_reports_then_fixes_drift(self, app, db_session, shop_a, customer_a):
        customer = db_session.get(Customer, customer_a.id)
        customer.total_due_cents = 500
        db_session.commit()
        runner = app.test_cli_runner()

        report = runner.invoke(args=['ledger', 'check-balances', '--shop-id', str(shop_a.id)])
        assert report.exit_code == 1
        assert 'DRIFT customer' in report.output

        fixed = runner.invoke(args=['ledger', 'check-balances', '--shop-id', str(shop_a.id), '--fix'])
        assert fixed.exit_code == 0, fixed.output
        assert 'FIXED customer' in fixed.output

        clean = runner.invoke(args=['ledger', 'check-balances', '--shop-id', str(shop_a.id)])
        assert clean.exit_code == 0
        assert 'All balances match' in clean.output
        db_session.expire_all()
        assert db_session.get(Customer, customer_a.id).total_due_cents == 0
