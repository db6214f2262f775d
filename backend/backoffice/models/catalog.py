from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product with its stock buckets.

    STOCK BUCKETS:
    - stock: aggregate count, always moved by the same signed delta as the
      bucket it mirrors
    - attributes: [{id, name, variants: [{id, name, stock}]}]
      free variant stock, one independent pool per attribute dimension
    - combinations: [{id, selections: {attribute_id: variant_id}, stock,
      price_modifier_cents, sku}]
      pre-materialized cross-product; authoritative when an item's selection
      set matches one exactly

    Only services.stock_service may rewrite stock, attributes[].variants[].stock
    or combinations[].stock.
    """
    __tablename__ = "products"
    __table_args__ = (
        # SKUs are optional but unique within a store when present
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.Index("ix_products_store_name", "store_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    base_price_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="USD")

    stock = db.Column(db.Integer, nullable=False, default=0)
    attributes = db.Column(db.JSON, nullable=False, default=list)
    combinations = db.Column(db.JSON, nullable=False, default=list)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "base_price_cents": self.base_price_cents,
            "currency": self.currency,
            "stock": self.stock,
            "attributes": self.attributes or [],
            "combinations": self.combinations or [],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
