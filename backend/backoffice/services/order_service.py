# Overview: Service-layer operations for orders; creation, status transitions and item replacement.

"""
Order Service

Orders are created once with a per-store order_number. Every status change
goes through update_order_status(), which asks sync_service whether stock
must move and settles a pending receivable when the order completes.

STATUS TRANSITIONS:
- pending    -> processing, completed, cancelled
- processing -> pending, completed, cancelled
- completed  -> cancelled
- cancelled  -> (terminal)
Setting the current status again is a no-op.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import exists

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, Receivable
from ..models.orders import (
    ORDER_STATUSES,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
)
from .activity_service import ENTITY_RECEIVABLE, append_activity
from .concurrency import lock_for_update, run_with_retry
from .listing import paginate, parse_status_filter
from .sequence_service import COUNTER_ORDER, allocate_sequence, flush_numbered
from .stock_service import SIGN_DECREMENT, SIGN_INCREMENT, parse_line_items
from .tenant_service import require_store
from . import sync_service


ALLOWED_TRANSITIONS = {
    ORDER_STATUS_PENDING: {ORDER_STATUS_PROCESSING, ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PROCESSING: {ORDER_STATUS_PENDING, ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_COMPLETED: {ORDER_STATUS_CANCELLED},
    ORDER_STATUS_CANCELLED: set(),
}


def validate_items(items) -> list[dict]:
    """Non-empty list of item dicts with product_id and positive quantity."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one product")
    parse_line_items(items, strict=True)
    return [dict(item) for item in items]


def validate_total(total_cents) -> int:
    if isinstance(total_cents, bool) or not isinstance(total_cents, int) or total_cents < 0:
        raise ValidationError("total_cents must be a non-negative integer")
    return total_cents


def get_order(order_id: int, store_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id, store_id=store_id).first()
    if not order:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def _lock_order(order_id: int, store_id: int) -> Order:
    order = lock_for_update(
        db.session.query(Order).filter_by(id=order_id, store_id=store_id)
    ).first()
    if not order:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def get_order_by_number(store_id: int, order_number: int) -> Order:
    order = db.session.query(Order).filter_by(store_id=store_id, order_number=order_number).first()
    if not order:
        raise NotFoundError("Order not found", details={"order_number": order_number})
    return order


def list_orders(store_id: int, *, status=None, without_receivable: bool = False,
                limit: int | None = None, offset: int | None = None) -> dict:
    """
    Orders of one store, newest first.

    status: one status, a comma-separated string, or a list.
    without_receivable: only orders no receivable was ever created from.
    Returns the paginate() dict.
    """
    statuses = parse_status_filter(status, ORDER_STATUSES)
    query = db.session.query(Order).filter(Order.store_id == store_id)
    if statuses:
        query = query.filter(Order.status.in_(statuses))
    if without_receivable:
        query = query.filter(~exists().where(Receivable.order_id == Order.id))
    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(query, limit, offset)


def create_order(
    store_id: int,
    items: list[dict],
    total_cents: int,
    *,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    customer_email: str | None = None,
    custom_message: str | None = None,
    currency: str | None = None,
) -> Order:
    """Create a pending order numbered under the store lock."""
    store = require_store(store_id)
    clean_items = validate_items(items)
    total_cents = validate_total(total_cents)

    def _op():
        order_number = allocate_sequence(store.id, COUNTER_ORDER)
        order = Order(
            store_id=store.id,
            order_number=order_number,
            customer_name=customer_name or None,
            customer_phone=customer_phone or None,
            customer_email=customer_email or None,
            custom_message=custom_message or None,
            items=clean_items,
            total_cents=total_cents,
            currency=currency or store.currency or current_app.config["DEFAULT_CURRENCY"],
            status=ORDER_STATUS_PENDING,
            stock_applied=False,
        )
        flush_numbered(order, COUNTER_ORDER)
        db.session.commit()
        return order

    return run_with_retry(_op)


def update_order_status(order_id: int, store_id: int, new_status: str,
                        actor_user_id: int | None = None) -> Order:
    """
    Transition an order and run the synchronizer rules.

    - completed: settles a pending receivable, otherwise decrements stock
      once when no pending/paid receivable exists
    - cancelled from completed: restores stock when no receivable exists

    Stock moves after the status commit; a failed movement is logged and
    the transition stands.
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status {new_status!r}. Must be one of {list(ORDER_STATUSES)}"
        )

    def _op():
        order = _lock_order(order_id, store_id)
        if order.status == new_status:
            return order, None

        if new_status not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidStateError(
                f"Cannot move order from {order.status} to {new_status}",
                details={"order_id": order.id, "status": order.status},
            )

        sign = None
        if new_status == ORDER_STATUS_COMPLETED:
            if sync_service.on_order_completing(order, actor_user_id=actor_user_id):
                sign = SIGN_DECREMENT
        elif new_status == ORDER_STATUS_CANCELLED:
            if sync_service.on_order_cancelling(order):
                sign = SIGN_INCREMENT

        order.status = new_status
        items = list(order.items or [])
        db.session.commit()
        return order, (sign, items)

    order, movement = run_with_retry(_op)
    if movement and movement[0] is not None:
        sign, items = movement
        sync_service.move_order_stock(order.id, order.store_id, items, sign, actor_user_id)
    return order


def replace_order_items(
    order_id: int,
    store_id: int,
    new_items: list[dict],
    new_total_cents: int,
    *,
    update_amount: bool = True,
    actor_user_id: int | None = None,
) -> dict:
    """
    Replace the items/total of an order billed by a pending or paid
    receivable.

    Sequence: restore stock for the old items, persist the new items and
    total (and the receivable amount when update_amount), then decrement
    stock for the new items. Both stock steps are best-effort.

    Returns {"order": Order, "receivable": Receivable}.
    """
    clean_items = validate_items(new_items)
    new_total_cents = validate_total(new_total_cents)

    order = get_order(order_id, store_id)
    live = sync_service.receivables_for_order(
        order.id, store_id, sync_service.LIVE_RECEIVABLE_STATUSES
    )
    if not live:
        raise InvalidStateError(
            "Items can only be replaced on an order billed by a pending or paid receivable",
            details={"order_id": order.id},
        )

    stock_held = order.stock_applied
    if stock_held:
        sync_service.move_order_stock(order.id, store_id, list(order.items or []),
                                      SIGN_INCREMENT, actor_user_id)

    def _op():
        locked = _lock_order(order_id, store_id)
        live_now = sync_service.receivables_for_order(
            locked.id, store_id, sync_service.LIVE_RECEIVABLE_STATUSES
        )
        if not live_now:
            raise InvalidStateError(
                "Receivable was cancelled while items were being replaced",
                details={"order_id": locked.id},
            )
        receivable = live_now[0]

        locked.items = clean_items
        locked.total_cents = new_total_cents

        if update_amount:
            receivable.amount_cents = new_total_cents
            receivable.updated_by_user_id = actor_user_id
            append_activity(
                store_id=store_id,
                entity_type=ENTITY_RECEIVABLE,
                entity_id=receivable.id,
                action="items_updated",
                actor_user_id=actor_user_id,
                details={"new_total_cents": new_total_cents, "items_count": len(clean_items)},
            )

        db.session.commit()
        return locked, receivable

    order, receivable = run_with_retry(_op)

    if stock_held:
        sync_service.move_order_stock(order.id, store_id, clean_items,
                                      SIGN_DECREMENT, actor_user_id)

    return {"order": order, "receivable": receivable}
