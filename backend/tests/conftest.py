"""
Pytest fixtures for the Lenden ledger tests.

Provides test database setup, two-shop tenant fixtures, catalogue and
counterparty fixtures, and an event-recording sink.
"""

import pytest
from lenden import create_app
from lenden.extensions import db
from lenden.models import Shop, Product, Service, Customer, Vendor
from lenden.services.notification_service import set_event_sink, store_notification


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_STRICT_PAYMENT_GUARDS': False,
        'LEDGER_SUBTOTAL_TOLERANCE_CENTS': None,
        'LEDGER_RETRY_ATTEMPTS': 3,
        'NOTIFICATIONS_ENABLED': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def published_events(app):
    """Replace the notification sink with a list recorder for one test."""
    events = []
    set_event_sink(app, events.append)
    yield events
    set_event_sink(app, store_notification)


@pytest.fixture(scope='function')
def strict_guards(app):
    """Enable strict payment guards for one test."""
    app.config['LEDGER_STRICT_PAYMENT_GUARDS'] = True
    yield
    app.config['LEDGER_STRICT_PAYMENT_GUARDS'] = False


@pytest.fixture(scope='function')
def shop_a(db_session):
    """Create Shop A (first tenant)."""
    shop = Shop(name="Shop A - Karim Store", code="SHOPA", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def shop_b(db_session):
    """Create Shop B (second tenant)."""
    shop = Shop(name="Shop B - Rahman Traders", code="SHOPB", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def product_a(db_session, shop_a):
    """Product in Shop A: stock 10, min 5, price 100, cost 60."""
    product = Product(
        shop_id=shop_a.id,
        sku="PROD-A-001",
        name="Product A",
        selling_price_cents=100,
        cost_price_cents=60,
        stock_quantity=10,
        min_stock_level=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_a2(db_session, shop_a):
    """Second product in Shop A: stock 20, min 2."""
    product = Product(
        shop_id=shop_a.id,
        sku="PROD-A-002",
        name="Product A2",
        selling_price_cents=250,
        cost_price_cents=180,
        stock_quantity=20,
        min_stock_level=2,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, shop_b):
    """Product in Shop B."""
    product = Product(
        shop_id=shop_b.id,
        sku="PROD-B-001",
        name="Product B",
        selling_price_cents=2000,
        cost_price_cents=1500,
        stock_quantity=50,
        min_stock_level=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def service_a(db_session, shop_a):
    service = Service(shop_id=shop_a.id, name="Screen Repair", price_cents=500)
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture(scope='function')
def customer_a(db_session, shop_a):
    customer = Customer(
        shop_id=shop_a.id,
        name="Customer C",
        phone="01711111111",
        address="Dhanmondi, Dhaka",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, shop_b):
    customer = Customer(shop_id=shop_b.id, name="Customer in B", phone="01722222222")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def vendor_a(db_session, shop_a):
    vendor = Vendor(shop_id=shop_a.id, name="Vendor V", phone="01811111111")
    db_session.add(vendor)
    db_session.commit()
    return vendor


@pytest.fixture(scope='function')
def vendor_b(db_session, shop_b):
    vendor = Vendor(shop_id=shop_b.id, name="Vendor in B")
    db_session.add(vendor)
    db_session.commit()
    return vendor


def product_line(product, quantity: int, unit_price: int | None = None) -> dict:
    """Sale line for a product with a consistent subtotal."""
    price = product.selling_price_cents if unit_price is None else unit_price
    return {
        'product_id': product.id,
        'quantity': quantity,
        'unit_price': price,
        'subtotal': price * quantity,
    }


def service_line(service, quantity: int = 1) -> dict:
    return {
        'service_id': service.id,
        'quantity': quantity,
        'unit_price': service.price_cents,
        'subtotal': service.price_cents * quantity,
    }


def shop_headers(shop) -> dict:
    """Helper to create tenant headers."""
    return {'X-Shop-Id': str(shop.id)}
