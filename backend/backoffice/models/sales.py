from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_REFUNDED = "refunded"
SALE_STATUS_CANCELLED = "cancelled"

SALE_STATUSES = (
    SALE_STATUS_COMPLETED,
    SALE_STATUS_REFUNDED,
    SALE_STATUS_CANCELLED,
)


class Sale(db.Model):
    """
    Point-of-sale transaction, already paid at creation.

    items is a JSON list of pre-resolved line items:
        {"product_id": int, "combination_id": str | None, "quantity": int,
         ...display fields such as product_name, unit_price_cents}

    Stock is decremented right after the sale commits and restored on
    refund/cancel. Sales never touch receivables.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sale_number", name="uq_sales_store_sale_number"),
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    sale_number = db.Column(db.Integer, nullable=False)

    # Client directory lives outside the core
    client_id = db.Column(db.Integer, nullable=True, index=True)

    items = db.Column(db.JSON, nullable=False, default=list)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="USD")

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.sale_number} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sale_number": self.sale_number,
            "client_id": self.client_id,
            "items": self.items or [],
            "total_cents": self.total_cents,
            "currency": self.currency,
            "status": self.status,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
