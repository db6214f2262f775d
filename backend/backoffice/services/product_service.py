# Overview: Service-layer operations for products; catalog entry point limited to the stock fields.

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from .tenant_service import require_store


def _validate_attributes(attributes) -> list:
    if attributes is None:
        return []
    if not isinstance(attributes, list):
        raise ValidationError("attributes must be a list")
    for attribute in attributes:
        if not isinstance(attribute, dict) or not attribute.get("id"):
            raise ValidationError("Each attribute requires an id")
        variants = attribute.get("variants", [])
        if not isinstance(variants, list):
            raise ValidationError("attribute variants must be a list")
        for variant in variants:
            if not isinstance(variant, dict) or not variant.get("id"):
                raise ValidationError("Each variant requires an id")
            _validate_stock(variant.get("stock", 0))
    return attributes


def _validate_combinations(combinations) -> list:
    if combinations is None:
        return []
    if not isinstance(combinations, list):
        raise ValidationError("combinations must be a list")
    seen_ids = set()
    for combo in combinations:
        if not isinstance(combo, dict) or not combo.get("id"):
            raise ValidationError("Each combination requires an id")
        if combo["id"] in seen_ids:
            raise ValidationError(f"Duplicate combination id {combo['id']!r}")
        seen_ids.add(combo["id"])
        if not isinstance(combo.get("selections"), dict):
            raise ValidationError("Each combination requires a selections object")
        _validate_stock(combo.get("stock", 0))
    return combinations


def _validate_stock(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("stock must be a non-negative integer")
    return value


def create_product(
    *,
    store_id: int,
    name: str,
    sku: str | None = None,
    base_price_cents: int = 0,
    stock: int = 0,
    attributes: list | None = None,
    combinations: list | None = None,
    description: str | None = None,
    currency: str | None = None,
) -> Product:
    """
    Create a product with its stock buckets.

    Raises:
        ValidationError: malformed name, stock or variant structures
        ConflictError: SKU already exists in the store
    """
    store = require_store(store_id)

    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    _validate_stock(stock)
    if isinstance(base_price_cents, bool) or not isinstance(base_price_cents, int) or base_price_cents < 0:
        raise ValidationError("base_price_cents must be a non-negative integer")

    sku = (sku or "").strip() or None
    if sku:
        existing = (
            db.session.query(Product)
            .filter(Product.store_id == store.id, Product.sku == sku)
            .first()
        )
        if existing:
            raise ConflictError("SKU already exists for this store.", details={"sku": sku})

    product = Product(
        store_id=store.id,
        sku=sku,
        name=name,
        description=description,
        base_price_cents=base_price_cents,
        currency=currency or store.currency or current_app.config["DEFAULT_CURRENCY"],
        stock=stock,
        attributes=_validate_attributes(attributes),
        combinations=_validate_combinations(combinations),
    )
    db.session.add(product)
    db.session.commit()
    return product


def get_product_stock(product_id: int, store_id: int) -> dict:
    """Snapshot of every stock bucket of a product."""
    product = db.session.query(Product).filter_by(id=product_id, store_id=store_id).first()
    if not product:
        raise NotFoundError("Product not found", details={"product_id": product_id})

    variants = {}
    for attribute in product.attributes or []:
        for variant in attribute.get("variants") or []:
            variants[(str(attribute.get("id")), str(variant.get("id")))] = variant.get("stock", 0)

    return {
        "product_id": product.id,
        "stock": product.stock,
        "variants": variants,
        "combinations": {
            str(combo.get("id")): combo.get("stock", 0) for combo in product.combinations or []
        },
    }
