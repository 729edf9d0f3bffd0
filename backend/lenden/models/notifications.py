from __future__ import annotations

import json

from ..extensions import db
from lenden.time_utils import to_utc_z


class Notification(db.Model):
    """
    In-app notification written by the default event sink.

    WHY: Ledger events (low stock, new sale, overdue payment, payment
    received) surface in the shop's notification bell. Email/push delivery
    is a separate consumer and not modelled here.

    Rows are written after the ledger commit they describe; losing one
    never affects the ledger.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_shop_created", "shop_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)  # low_stock, new_sale, overdue_payment, payment_received
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255), nullable=True)
    data = db.Column(db.Text, nullable=True)  # JSON payload of the event

    is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "data": json.loads(self.data) if self.data else None,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
