from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
)


class Order(db.Model):
    """
    Customer order (a purchase request awaiting fulfillment or billing).

    items is a JSON list of line items:
        {"product_id": int, "quantity": int,
         "selected_variants": [{"attribute_id": str, "variant_id": str}],
         ...display fields such as product_name, unit_price_cents}

    stock_applied records whether this order's items are currently
    decremented from stock. It is flipped in the same transaction as the
    status write that schedules the movement.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("store_id", "order_number", name="uq_orders_store_order_number"),
        db.Index("ix_orders_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    order_number = db.Column(db.Integer, nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    custom_message = db.Column(db.Text, nullable=True)

    items = db.Column(db.JSON, nullable=False, default=list)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="USD")

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    stock_applied = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("orders", lazy=True))

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "custom_message": self.custom_message,
            "items": self.items or [],
            "total_cents": self.total_cents,
            "currency": self.currency,
            "status": self.status,
            "stock_applied": self.stock_applied,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
