from __future__ import annotations

from ..extensions import db
from lenden.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data with running balances.

    MULTI-TENANT: Customers are scoped to shops via shop_id.

    Denormalized aggregates (maintained by the ledger engine only):
    - total_due_cents: amount the customer currently owes the shop
    - total_spent_cents: lifetime gross of sales to this customer

    Both can be rebuilt by replaying the customer's transactions
    (balance_service.recompute_customer_balances).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_shop_name", "shop_id", "name"),
        db.Index("ix_customers_shop_phone", "shop_id", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    total_due_cents = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    shop = db.relationship("Shop", backref=db.backref("customers", lazy=True))

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} shop_id={self.shop_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "total_due_cents": self.total_due_cents,
            "total_spent_cents": self.total_spent_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
