# Overview: Threaded concurrency tests for stock and balance updates.

"""
Scripted concurrency tests for the ledger.

Each test runs against a temporary SQLite file so that worker threads get
real, separate connections. Run with:
    python -m pytest backend/tests/test_concurrency.py
"""
import os
import tempfile
import threading
import unittest

from lenden import create_app
from lenden.errors import InsufficientStock
from lenden.extensions import db
from lenden.models import Shop, Product, Customer, Transaction
from lenden.services import balance_service, ledger_service


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LEDGER_RETRY_ATTEMPTS": 5,
            "NOTIFICATIONS_ENABLED": False,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            shop = Shop(name="Concurrency Shop", code="CONCUR", is_active=True)
            db.session.add(shop)
            db.session.commit()
            self.shop_id = shop.id

            product = Product(
                shop_id=self.shop_id,
                sku="CONCUR-1",
                name="Concurrent Product",
                selling_price_cents=1000,
                cost_price_cents=400,
                stock_quantity=10,
                min_stock_level=0,
            )
            customer = Customer(shop_id=self.shop_id, name="Concurrent Customer")
            db.session.add_all([product, customer])
            db.session.commit()
            self.product_id = product.id
            self.customer_id = customer.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, targets):
        threads = [threading.Thread(target=t) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def _sell(self, quantity, results, lock):
        def worker():
            with self.app.app_context():
                try:
                    line = {
                        "product_id": self.product_id,
                        "quantity": quantity,
                        "unit_price": 1000,
                        "subtotal": 1000 * quantity,
                    }
                    txn_id = ledger_service.create_sale(self.shop_id, [line], 1000 * quantity, "cash")
                    with lock:
                        results.append(txn_id)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()
        return worker

    def test_concurrent_sale_oversell(self):
        results = []
        lock = threading.Lock()

        self._run_threads([self._sell(6, results, lock), self._sell(6, results, lock)])

        posted = [r for r in results if isinstance(r, int)]
        rejected = [r for r in results if isinstance(r, InsufficientStock)]
        self.assertEqual(len(posted), 1, results)
        self.assertEqual(len(rejected), 1, results)

        with self.app.app_context():
            self.assertEqual(db.session.get(Product, self.product_id).stock_quantity, 4)
            self.assertEqual(db.session.query(Transaction).count(), 1)

    def test_many_small_sales_never_go_negative(self):
        results = []
        lock = threading.Lock()

        self._run_threads([self._sell(1, results, lock) for _ in range(12)])

        posted = [r for r in results if isinstance(r, int)]
        self.assertEqual(len(posted), 10, results)
        self.assertTrue(all(isinstance(r, (int, InsufficientStock)) for r in results), results)

        with self.app.app_context():
            self.assertEqual(db.session.get(Product, self.product_id).stock_quantity, 0)

    def test_concurrent_payments_keep_due_consistent(self):
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    ledger_service.receive_payment(self.shop_id, self.customer_id, 100, "cash")
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([worker for _ in range(8)])

        self.assertFalse(errors)
        with self.app.app_context():
            customer = db.session.get(Customer, self.customer_id)
            self.assertEqual(customer.total_due_cents, -800)
            replayed = balance_service.recompute_customer_balances(self.shop_id, self.customer_id)
            self.assertEqual(replayed["total_due_cents"], -800)


if __name__ == "__main__":
    unittest.main()
