from __future__ import annotations

from ..extensions import db
from lenden.time_utils import to_utc_z, to_iso_date


# Transaction types
TYPE_SALE = "sale"
TYPE_PURCHASE = "purchase"
TYPE_PAYMENT_RECEIVED = "payment_received"
TYPE_PAYMENT_MADE = "payment_made"
TYPE_EXPENSE = "expense"

VALID_TRANSACTION_TYPES = [
    TYPE_SALE,
    TYPE_PURCHASE,
    TYPE_PAYMENT_RECEIVED,
    TYPE_PAYMENT_MADE,
    TYPE_EXPENSE,
]


class Transaction(db.Model):
    """
    One financial event: sale, purchase, payment_received, payment_made or expense.

    WHY: The transaction row is the ledger. Customer/vendor balances and
    product stock are derived state that the ledger engine mutates in the
    same DB transaction as the row itself.

    LIFECYCLE:
    - Created exactly once by services/ledger_service.py
    - status is derived at creation (status_service.derive_status)
    - Later mutated only by ledger_service.update_status (explicit override,
      reconciles balances) and overdue_service (Pending -> Overdue)
    - Never deleted

    SNAPSHOT: customer_*_snapshot columns are copied from the customer at
    creation and never updated, so invoices keep showing what was true at
    the time of sale.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        # Composite index for shop-scoped listings by type and date
        db.Index("ix_transactions_shop_type_created", "shop_id", "type", "created_at"),
        # Supports the overdue sweep (status + due_date range scan)
        db.Index("ix_transactions_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)

    # All amounts in cents. amount is net of discount.
    amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)

    # Immutable customer snapshot
    customer_name_snapshot = db.Column(db.String(255), nullable=True)
    customer_phone_snapshot = db.Column(db.String(32), nullable=True)
    customer_address_snapshot = db.Column(db.Text, nullable=True)

    description = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="Pending", index=True)
    due_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("transactions", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("transactions", lazy=True))
    vendor = db.relationship("Vendor", backref=db.backref("transactions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def due_amount_cents(self) -> int:
        return self.amount_cents - self.paid_amount_cents

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.type} status={self.status} shop_id={self.shop_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "due_amount_cents": self.due_amount_cents,
            "discount_cents": self.discount_cents,
            "payment_method": self.payment_method,
            "customer_id": self.customer_id,
            "vendor_id": self.vendor_id,
            "customer_name_snapshot": self.customer_name_snapshot,
            "customer_phone_snapshot": self.customer_phone_snapshot,
            "customer_address_snapshot": self.customer_address_snapshot,
            "description": self.description,
            "status": self.status,
            "due_date": to_iso_date(self.due_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class TransactionLine(db.Model):
    """
    One product or service row on a sale or purchase.

    Exactly one of product_id / service_id is set. cost_price_cents is a
    server-side snapshot (product cost at sale time, unit price for
    purchases) so margin reports are immune to later cost changes.
    Immutable once written.
    """
    __tablename__ = "transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_transaction_lines_txn_line"),
        db.CheckConstraint("quantity > 0", name="ck_transaction_lines_quantity_positive"),
        db.CheckConstraint(
            "(product_id IS NULL) <> (service_id IS NULL)",
            name="ck_transaction_lines_one_target",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship(
        "Transaction",
        backref=db.backref("lines", lazy=True, order_by="TransactionLine.line_number"),
    )
    product = db.relationship("Product")
    service = db.relationship("Service")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "product_sku": self.product.sku if self.product else None,
            "service_id": self.service_id,
            "service_name": self.service.name if self.service else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "created_at": to_utc_z(self.created_at),
        }
