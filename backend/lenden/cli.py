# Overview: Flask CLI command groups for bootstrap and ledger maintenance.

# backend/lenden/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent). Use `flask db upgrade` for migrated databases.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo [--shop-name "Demo Shop"]
#   Create a demo shop with products, a service, a customer and a vendor.
#
# Ledger maintenance:
# - python -m flask ledger sweep-overdue [--today 2026-01-31]
#   Move elapsed Pending transactions to Overdue. Run daily from cron.
# - python -m flask ledger low-stock --shop-id 1
#   List active products at or below their minimum stock level.
# - python -m flask ledger check-balances --shop-id 1 [--fix]
#   Compare stored customer/vendor balances with a replay of the ledger.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Shop, Product, Service, Customer, Vendor
from .services import balance_service, overdue_service, stock_service
from .time_utils import parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@click.option('--shop-name', default='Demo Shop', help='Shop name')
@click.option('--shop-code', default='DEMO', help='Shop code')
@with_appcontext
def seed_demo(shop_name, shop_code):
    """
    Create a demo shop with a small catalogue (idempotent on shop code).

    Creates:
    - Shop
    - Products: two stocked items, one already at its minimum level
    - Service: one repair service
    - Customer and Vendor with zero balances
    """
    shop = db.session.query(Shop).filter_by(code=shop_code).first()
    if shop:
        click.echo(f"PASS Using existing shop: {shop.name} (ID: {shop.id}, Code: {shop.code})")
        return

    shop = Shop(name=shop_name, code=shop_code, is_active=True)
    db.session.add(shop)
    db.session.flush()

    db.session.add_all([
        Product(shop_id=shop.id, sku="RICE-5KG", name="Rice 5kg",
                selling_price_cents=65000, cost_price_cents=52000,
                stock_quantity=40, min_stock_level=5),
        Product(shop_id=shop.id, sku="OIL-1L", name="Soybean Oil 1L",
                selling_price_cents=18500, cost_price_cents=16000,
                stock_quantity=12, min_stock_level=10),
        Product(shop_id=shop.id, sku="SUGAR-1KG", name="Sugar 1kg",
                selling_price_cents=14000, cost_price_cents=12000,
                stock_quantity=3, min_stock_level=3),
        Service(shop_id=shop.id, name="Phone Repair", price_cents=50000),
        Customer(shop_id=shop.id, name="Rahim Uddin", phone="01700000001", address="Mirpur, Dhaka"),
        Vendor(shop_id=shop.id, name="City Wholesale", phone="01800000002", address="Karwan Bazar, Dhaka"),
    ])
    db.session.commit()

    click.echo(f"PASS Created demo shop: {shop.name} (ID: {shop.id}, Code: {shop.code})")


@click.group('ledger')
def ledger_group():
    """Ledger maintenance commands."""


@ledger_group.command('sweep-overdue')
@click.option('--today', 'today_str', default=None, help='Reference date YYYY-MM-DD (default: today, UTC)')
@with_appcontext
def sweep_overdue(today_str):
    """Move elapsed Pending transactions to Overdue and emit overdue_payment events."""
    try:
        today = parse_iso_date(today_str) if today_str else None
    except ValueError:
        raise click.BadParameter("Expected YYYY-MM-DD", param_hint="--today")

    result = overdue_service.sweep_overdue_transactions(today)
    click.echo(
        f"PASS Examined {result.examined}, transitioned {result.transitioned}, "
        f"skipped {result.skipped}, failed {result.failed}"
    )


@ledger_group.command('low-stock')
@click.option('--shop-id', type=int, required=True, help='Shop ID')
@with_appcontext
def low_stock(shop_id):
    """List active products at or below their minimum stock level."""
    products = stock_service.low_stock_products(shop_id)
    if not products:
        click.echo("PASS No low stock products.")
        return

    click.echo(f"\n{'ID':<6} {'SKU':<16} {'Name':<30} {'Stock':>6} {'Min':>6}")
    click.echo("-" * 68)
    for p in products:
        click.echo(f"{p.id:<6} {(p.sku or '-'):<16} {p.name[:30]:<30} {p.stock_quantity:>6} {p.min_stock_level:>6}")
    click.echo(f"\nTotal: {len(products)} products")


@ledger_group.command('check-balances')
@click.option('--shop-id', type=int, required=True, help='Shop ID')
@click.option('--fix', is_flag=True, help='Overwrite drifted balances with replayed values')
@with_appcontext
def check_balances(shop_id, fix):
    """Compare stored customer/vendor balances with a replay of the transaction ledger."""
    drift = balance_service.repair_balance_drift(shop_id) if fix else balance_service.find_balance_drift(shop_id)

    if not drift:
        click.echo("PASS All balances match the ledger.")
        return

    for item in drift:
        click.echo(
            f"{'FIXED' if fix else 'DRIFT'} {item.entity_type} {item.entity_id} {item.field}: "
            f"stored={item.stored_cents} replayed={item.recomputed_cents} "
            f"(diff {item.difference_cents:+d})"
        )

    if not fix:
        click.echo(f"\nWARN {len(drift)} mismatched balances. Re-run with --fix to repair.")
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
