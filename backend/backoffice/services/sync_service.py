# Overview: Order-Receivable synchronizer; decides, per lifecycle event, whether stock moves and which counterpart transitions.

"""
Order <-> Receivable synchronization

SINGLE-DECREMENT INVARIANT: an order's items leave stock exactly once,
whichever path triggers it:

| Event                          | Guard                                   | Stock              |
|--------------------------------|-----------------------------------------|--------------------|
| receivable created from order  | order pending, no receivable yet        | decrement          |
| order marked completed         | no pending/paid receivable              | decrement          |
|   ...with a pending receivable | (receivable auto-marked paid)           | none               |
| receivable reaches paid        | order linked, not completed             | none (order ->     |
|                                |                                         | completed)         |
| completed order cancelled      | no receivable at all                    | restore            |
| receivable cancelled           | linked order not cancelled              | restore            |
| order items replaced           | pending/paid receivable                 | restore old,       |
|                                |                                         | decrement new      |

Each guard is backed by Order.stock_applied: a decrement is scheduled only
while the flag is clear and a restore only while it is set, and the flag is
flipped in the same transaction as the status write. Every function here
runs inside the caller's transaction; the stock movement itself is applied
afterwards with stock_service.apply_stock_after_commit.

Known gap: a paid receivable's order may still be cancelled by an operator.
The order becomes cancelled but stock is NOT restored on that path.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, Receivable
from ..models.orders import ORDER_STATUS_CANCELLED, ORDER_STATUS_COMPLETED, ORDER_STATUS_PENDING
from ..models.receivables import (
    RECEIVABLE_STATUS_PAID,
    RECEIVABLE_STATUS_PENDING,
)
from ..time_utils import utcnow
from .activity_service import ENTITY_ORDER, ENTITY_RECEIVABLE, append_activity
from .stock_service import SIGN_DECREMENT, apply_stock_after_commit


LIVE_RECEIVABLE_STATUSES = (RECEIVABLE_STATUS_PENDING, RECEIVABLE_STATUS_PAID)

ACTION_STOCK_DECREMENTED = "stock_decremented"
ACTION_STOCK_RESTORED = "stock_restored"


# =============================================================================
# GUARDS
# =============================================================================

def receivables_for_order(order_id: int, store_id: int, statuses=None) -> list[Receivable]:
    query = db.session.query(Receivable).filter_by(order_id=order_id, store_id=store_id)
    if statuses is not None:
        query = query.filter(Receivable.status.in_(statuses))
    return query.order_by(Receivable.id.asc()).all()


def has_receivable(order_id: int, store_id: int) -> bool:
    return (
        db.session.query(Receivable.id)
        .filter_by(order_id=order_id, store_id=store_id)
        .first()
        is not None
    )


# =============================================================================
# STOCK FLAG
# =============================================================================

def schedule_decrement(order: Order) -> bool:
    """Mark the order's stock as applied; False if it already was."""
    if order.stock_applied:
        return False
    order.stock_applied = True
    return True


def schedule_restore(order: Order) -> bool:
    """Mark the order's stock as given back; False if it was not applied."""
    if not order.stock_applied:
        return False
    order.stock_applied = False
    return True


def move_order_stock(order_id: int, store_id: int, items, sign: int,
                     actor_user_id: int | None = None) -> bool:
    """Apply a scheduled order movement after the triggering write committed."""
    return apply_stock_after_commit(
        store_id=store_id,
        items=items,
        sign=sign,
        entity_type=ENTITY_ORDER,
        entity_id=order_id,
        action=ACTION_STOCK_DECREMENTED if sign == SIGN_DECREMENT else ACTION_STOCK_RESTORED,
        actor_user_id=actor_user_id,
    )


# =============================================================================
# EVENT RULES (run inside the caller's transaction)
# =============================================================================

def on_receivable_created(order: Order) -> bool:
    """
    Receivable created from order: decrement the order's items once.
    Caller has already checked the order is pending with no receivable.
    """
    return schedule_decrement(order)


def on_order_completing(order: Order, actor_user_id: int | None = None) -> bool:
    """
    Order about to become completed.

    With a pending/paid receivable the stock already moved at receivable
    creation: pending receivables are settled instead and no stock moves.
    Without one, schedule the single decrement here.
    """
    live = receivables_for_order(order.id, order.store_id, LIVE_RECEIVABLE_STATUSES)
    for receivable in live:
        if receivable.status == RECEIVABLE_STATUS_PENDING:
            receivable.status = RECEIVABLE_STATUS_PAID
            receivable.paid_at = utcnow()
            receivable.updated_by_user_id = actor_user_id
            append_activity(
                store_id=receivable.store_id,
                entity_type=ENTITY_RECEIVABLE,
                entity_id=receivable.id,
                action="status_paid",
                actor_user_id=actor_user_id,
                details={"source": "order_completed", "order_id": order.id},
            )
    if live:
        return False
    return schedule_decrement(order)


def on_order_cancelling(order: Order) -> bool:
    """
    Order about to become cancelled. Only a completed order whose stock was
    taken by its own completion (no receivable ever existed) gets it back.
    """
    if order.status != ORDER_STATUS_COMPLETED:
        return False
    if has_receivable(order.id, order.store_id):
        return False
    return schedule_restore(order)


def on_receivable_paid(receivable: Receivable) -> None:
    """
    Receivable reached paid: complete its order. Stock already moved when
    the receivable was created, so nothing is scheduled.
    """
    if not receivable.order_id:
        return
    order = (
        db.session.query(Order)
        .filter_by(id=receivable.order_id, store_id=receivable.store_id)
        .first()
    )
    if not order or order.status == ORDER_STATUS_COMPLETED:
        return
    if order.status == ORDER_STATUS_CANCELLED:
        current_app.logger.warning(
            "Receivable %s paid but order %s is cancelled; order left as is",
            receivable.id, order.id,
        )
        return
    order.status = ORDER_STATUS_COMPLETED


def on_receivable_cancelled(receivable: Receivable) -> Order | None:
    """
    Receivable cancelled: give the linked order's stock back unless the
    order itself is already cancelled. Order status is left untouched.

    Returns the order when a restore was scheduled.
    """
    if not receivable.order_id:
        return None
    order = (
        db.session.query(Order)
        .filter_by(id=receivable.order_id, store_id=receivable.store_id)
        .first()
    )
    if not order or order.status == ORDER_STATUS_CANCELLED:
        return None
    return order if schedule_restore(order) else None


def can_create_receivable(order: Order) -> tuple[bool, str | None]:
    if order.status != ORDER_STATUS_PENDING:
        return False, f"Only pending orders can be billed (order is {order.status})"
    if has_receivable(order.id, order.store_id):
        return False, "Order already has a receivable"
    return True, None

