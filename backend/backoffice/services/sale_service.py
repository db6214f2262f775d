# Overview: Service-layer operations for sales; stock pre-check, numbering, and post-commit stock movement.

"""
Sale Service

A sale is a point-of-sale transaction that is already paid when it is
recorded. It never touches receivables.

FLOW:
1. Under the store lock, re-read stock for every item and fail the whole
   sale on the first bucket asked for more than is available (lines on
   the same bucket are summed)
2. Allocate the sale number and insert the row
3. Commit
4. Decrement stock in a separate transaction (best-effort, logged on failure)

Refund/cancel are legal only from completed and give the stock back with
the same post-commit pattern.
"""

from __future__ import annotations

from flask import current_app

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Sale
from ..models.sales import (
    SALE_STATUSES,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_REFUNDED,
)
from ..time_utils import utcnow
from .activity_service import ENTITY_SALE, append_activity
from .concurrency import acquire_store_lock, lock_for_update, run_with_retry
from .listing import paginate, parse_status_filter
from .sequence_service import COUNTER_SALE, allocate_sequence, flush_numbered
from .stock_service import (
    SIGN_DECREMENT,
    SIGN_INCREMENT,
    apply_stock_after_commit,
    check_availability,
    parse_line_items,
)
from .tenant_service import require_store


def _validate_sale_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Sale must contain at least one item")
    parse_line_items(items, strict=True)
    return [dict(item) for item in items]


def get_sale(sale_id: int, store_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, store_id=store_id).first()
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def get_sale_by_number(store_id: int, sale_number: int) -> Sale:
    sale = db.session.query(Sale).filter_by(store_id=store_id, sale_number=sale_number).first()
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_number": sale_number})
    return sale


def list_sales(store_id: int, *, status=None, client_id: int | None = None,
               limit: int | None = None, offset: int | None = None) -> dict:
    """Sales of one store, newest first. Returns the paginate() dict."""
    statuses = parse_status_filter(status, SALE_STATUSES)
    query = db.session.query(Sale).filter(Sale.store_id == store_id)
    if statuses:
        query = query.filter(Sale.status.in_(statuses))
    if client_id is not None:
        query = query.filter(Sale.client_id == client_id)
    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    return paginate(query, limit, offset)


def create_sale(
    store_id: int,
    client_id: int | None,
    items: list[dict],
    total_cents: int,
    actor_user_id: int | None = None,
    *,
    currency: str | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Record a completed, paid sale.

    Raises:
        ValidationError: empty items, bad quantity, negative total
        NotFoundError: a product or combination no longer exists
        InsufficientStockError: an item asks for more than is available;
            no sale row is written and no stock moves
    """
    store = require_store(store_id)
    clean_items = _validate_sale_items(items)
    if isinstance(total_cents, bool) or not isinstance(total_cents, int) or total_cents < 0:
        raise ValidationError("total_cents must be a non-negative integer")

    def _op():
        acquire_store_lock(store.id)
        check_availability(store.id, clean_items)

        number = allocate_sequence(store.id, COUNTER_SALE)
        sale = Sale(
            store_id=store.id,
            sale_number=number,
            client_id=client_id,
            items=clean_items,
            total_cents=total_cents,
            currency=currency or store.currency or current_app.config["DEFAULT_CURRENCY"],
            status=SALE_STATUS_COMPLETED,
            paid_at=utcnow(),
            payment_method=payment_method or None,
            notes=notes or None,
            created_by_user_id=actor_user_id,
        )
        flush_numbered(sale, COUNTER_SALE)
        append_activity(
            store_id=store.id,
            entity_type=ENTITY_SALE,
            entity_id=sale.id,
            action="created",
            actor_user_id=actor_user_id,
            details={"sale_number": number, "total_cents": total_cents},
        )
        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    apply_stock_after_commit(
        store_id=store.id,
        items=clean_items,
        sign=SIGN_DECREMENT,
        entity_type=ENTITY_SALE,
        entity_id=sale.id,
        action="stock_decremented",
        actor_user_id=actor_user_id,
    )
    return sale


def _reverse_sale(sale_id: int, store_id: int, new_status: str, actor_user_id: int | None) -> Sale:
    def _op():
        sale = lock_for_update(
            db.session.query(Sale).filter_by(id=sale_id, store_id=store_id)
        ).first()
        if not sale:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})
        if sale.status != SALE_STATUS_COMPLETED:
            raise InvalidStateError(
                f"Only completed sales can be {new_status} (sale is {sale.status})",
                details={"sale_id": sale.id, "status": sale.status},
            )

        sale.status = new_status
        sale.updated_by_user_id = actor_user_id
        append_activity(
            store_id=sale.store_id,
            entity_type=ENTITY_SALE,
            entity_id=sale.id,
            action=new_status,
            actor_user_id=actor_user_id,
        )
        items = list(sale.items or [])
        db.session.commit()
        return sale, items

    sale, items = run_with_retry(_op)

    apply_stock_after_commit(
        store_id=store_id,
        items=items,
        sign=SIGN_INCREMENT,
        entity_type=ENTITY_SALE,
        entity_id=sale.id,
        action="stock_restored",
        actor_user_id=actor_user_id,
    )
    return sale


def refund_sale(sale_id: int, store_id: int, actor_user_id: int | None = None) -> Sale:
    return _reverse_sale(sale_id, store_id, SALE_STATUS_REFUNDED, actor_user_id)


def cancel_sale(sale_id: int, store_id: int, actor_user_id: int | None = None) -> Sale:
    return _reverse_sale(sale_id, store_id, SALE_STATUS_CANCELLED, actor_user_id)
