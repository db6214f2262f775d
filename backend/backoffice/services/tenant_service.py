# Overview: Service-layer operations for tenants (stores); every other service scopes by store_id.

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Store


def require_store(store_id: int) -> Store:
    """
    Load a store or raise NotFoundError.

    All order/receivable/sale lookups additionally filter by store_id, so a
    foreign id simply looks missing.
    """
    store = db.session.query(Store).filter_by(id=store_id).first() if store_id else None
    if not store:
        raise NotFoundError("Store not found", details={"store_id": store_id})
    return store


def create_store(name: str, code: str | None = None, currency: str | None = None) -> Store:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Store name is required")

    code = (code or "").strip() or None
    if code and db.session.query(Store).filter_by(code=code).first():
        raise ConflictError(f"Store code {code!r} already exists")

    store = Store(
        name=name,
        code=code,
        currency=currency or current_app.config["DEFAULT_CURRENCY"],
    )
    db.session.add(store)
    db.session.commit()
    return store


def list_stores() -> list[Store]:
    return db.session.query(Store).order_by(Store.id.asc()).all()
