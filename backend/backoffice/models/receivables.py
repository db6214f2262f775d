from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


RECEIVABLE_STATUS_PENDING = "pending"
RECEIVABLE_STATUS_PAID = "paid"
RECEIVABLE_STATUS_CANCELLED = "cancelled"

RECEIVABLE_STATUSES = (
    RECEIVABLE_STATUS_PENDING,
    RECEIVABLE_STATUS_PAID,
    RECEIVABLE_STATUS_CANCELLED,
)


class Receivable(db.Model):
    """
    Money a customer owes the store, optionally linked to one Order.

    A receivable created from an order is where that order's stock is
    decremented. paid and cancelled are terminal.
    """
    __tablename__ = "receivables"
    __table_args__ = (
        db.UniqueConstraint("store_id", "receivable_number", name="uq_receivables_store_number"),
        db.Index("ix_receivables_store_status_created", "store_id", "status", "created_at"),
        db.CheckConstraint(
            "status IN ('pending', 'paid', 'cancelled')",
            name="ck_receivables_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    receivable_number = db.Column(db.Integer, nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="USD")
    status = db.Column(db.String(16), nullable=False, default=RECEIVABLE_STATUS_PENDING, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("receivables", lazy=True))
    order = db.relationship("Order", backref=db.backref("receivables", lazy=True))

    def __repr__(self) -> str:
        return f"<Receivable id={self.id} number={self.receivable_number} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "receivable_number": self.receivable_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "order_id": self.order_id,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ReceivablePayment(db.Model):
    """
    One partial payment applied to a receivable.

    IMMUTABLE: Rows are never updated or deleted. The paid-to-date figure
    is always re-summed from this table, never stored.
    """
    __tablename__ = "receivable_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_receivable_payments_amount_positive"),
        db.Index("ix_receivable_payments_receivable_created", "receivable_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receivable_id = db.Column(
        db.Integer,
        db.ForeignKey("receivables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="USD")
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    receivable = db.relationship("Receivable", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receivable_id": self.receivable_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
