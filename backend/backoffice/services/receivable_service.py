# Overview: Service-layer operations for receivables; creation, payment accumulation and status changes.

"""
Receivable Service

Receivables are money owed by a customer, created manually or from a
pending order. Partial payments accumulate in receivable_payments; the
paid-to-date figure is always re-summed, never stored.

DESIGN PRINCIPLES:
- A receivable created from an order is where that order's stock leaves
  (once, see sync_service)
- pending -> paid happens automatically as soon as the payments sum reaches
  the amount, or explicitly through update_receivable_status()
- paid and cancelled are terminal
- Reaching paid completes the linked order WITHOUT moving stock
- Cancelling gives the linked order's stock back (order status untouched)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import String, cast, func, or_

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, Receivable, ReceivablePayment
from ..models.receivables import (
    RECEIVABLE_STATUSES,
    RECEIVABLE_STATUS_CANCELLED,
    RECEIVABLE_STATUS_PAID,
    RECEIVABLE_STATUS_PENDING,
)
from ..time_utils import utcnow
from .activity_service import ENTITY_RECEIVABLE, append_activity
from .concurrency import lock_for_update, run_with_retry
from .listing import paginate, parse_status_filter
from .sequence_service import COUNTER_RECEIVABLE, allocate_sequence, flush_numbered
from .stock_service import SIGN_DECREMENT, SIGN_INCREMENT
from .tenant_service import require_store
from . import order_service, sync_service


EDITABLE_FIELDS = {"customer_name", "customer_phone", "description", "amount_cents", "currency"}


@dataclass
class ReceivableBalance:
    """A receivable with its payment ledger and the re-summed total."""
    receivable: Receivable
    payments: list[ReceivablePayment]
    total_paid_cents: int

    @property
    def balance_cents(self) -> int:
        return self.receivable.amount_cents - self.total_paid_cents

    def to_dict(self) -> dict:
        return {
            "receivable": self.receivable.to_dict(),
            "payments": [p.to_dict() for p in self.payments],
            "total_paid_cents": self.total_paid_cents,
            "balance_cents": self.balance_cents,
        }


# =============================================================================
# VALIDATION
# =============================================================================

def _validate_amount(amount_cents, *, field: str = "amount_cents") -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < 0:
        raise ValidationError(f"{field} must be a non-negative integer")
    return amount_cents


def _validate_payment_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Payment amount must be a positive integer number of cents")
    return amount_cents


def _clean(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _initial_payment(initial_payment) -> tuple[int, str | None] | None:
    """(amount_cents, notes) for a non-empty initial payment, else None."""
    if not initial_payment:
        return None
    if not isinstance(initial_payment, dict):
        raise ValidationError("initial_payment must be an object with amount_cents")
    amount = initial_payment.get("amount_cents")
    if amount is None or amount == "":
        return None
    return _validate_payment_amount(amount), _clean(initial_payment.get("notes"))


# =============================================================================
# LOOKUPS
# =============================================================================

def get_receivable(receivable_id: int, store_id: int) -> Receivable:
    receivable = db.session.query(Receivable).filter_by(id=receivable_id, store_id=store_id).first()
    if not receivable:
        raise NotFoundError("Receivable not found", details={"receivable_id": receivable_id})
    return receivable


def _lock_receivable(receivable_id: int, store_id: int) -> Receivable:
    receivable = lock_for_update(
        db.session.query(Receivable).filter_by(id=receivable_id, store_id=store_id)
    ).first()
    if not receivable:
        raise NotFoundError("Receivable not found", details={"receivable_id": receivable_id})
    return receivable


def get_receivable_by_number(store_id: int, receivable_number: int) -> Receivable:
    receivable = (
        db.session.query(Receivable)
        .filter_by(store_id=store_id, receivable_number=receivable_number)
        .first()
    )
    if not receivable:
        raise NotFoundError("Receivable not found", details={"receivable_number": receivable_number})
    return receivable


def list_receivables(store_id: int, *, status=None, search: str | None = None,
                     limit: int | None = None, offset: int | None = None) -> dict:
    """
    Receivables of one store, newest first.

    search matches customer name, phone or receivable number (case-insensitive
    substring). Returns the paginate() dict.
    """
    statuses = parse_status_filter(status, RECEIVABLE_STATUSES)
    query = db.session.query(Receivable).filter(Receivable.store_id == store_id)
    if statuses:
        query = query.filter(Receivable.status.in_(statuses))

    term = search.strip() if isinstance(search, str) else ""
    if term:
        pattern = f"%{term}%"
        query = query.filter(or_(
            Receivable.customer_name.ilike(pattern),
            Receivable.customer_phone.ilike(pattern),
            cast(Receivable.receivable_number, String).ilike(pattern),
        ))

    query = query.order_by(Receivable.created_at.desc(), Receivable.id.desc())
    return paginate(query, limit, offset)


def total_paid(receivable_id: int) -> int:
    return (
        db.session.query(func.coalesce(func.sum(ReceivablePayment.amount_cents), 0))
        .filter(ReceivablePayment.receivable_id == receivable_id)
        .scalar()
    )


def get_receivable_payments(receivable_id: int, store_id: int) -> ReceivableBalance:
    receivable = get_receivable(receivable_id, store_id)
    payments = (
        db.session.query(ReceivablePayment)
        .filter_by(receivable_id=receivable.id)
        .order_by(ReceivablePayment.created_at.asc(), ReceivablePayment.id.asc())
        .all()
    )
    return ReceivableBalance(
        receivable=receivable,
        payments=payments,
        total_paid_cents=sum(p.amount_cents for p in payments),
    )


def get_pending_total_by_store(store_id: int) -> dict[str, int]:
    """
    Outstanding balance (amount - paid) of pending receivables per currency.
    Currencies whose balance is not positive are omitted.
    """
    paid = (
        db.session.query(
            ReceivablePayment.receivable_id.label("receivable_id"),
            func.sum(ReceivablePayment.amount_cents).label("paid_cents"),
        )
        .group_by(ReceivablePayment.receivable_id)
        .subquery()
    )
    rows = (
        db.session.query(
            Receivable.currency,
            func.sum(Receivable.amount_cents - func.coalesce(paid.c.paid_cents, 0)),
        )
        .outerjoin(paid, paid.c.receivable_id == Receivable.id)
        .filter(Receivable.store_id == store_id, Receivable.status == RECEIVABLE_STATUS_PENDING)
        .group_by(Receivable.currency)
        .all()
    )
    return {currency or "USD": int(total) for currency, total in rows if total and total > 0}


# =============================================================================
# INTERNAL TRANSITIONS (caller's transaction)
# =============================================================================

def _mark_paid(receivable: Receivable, actor_user_id: int | None, action: str,
               details: dict | None = None) -> None:
    receivable.status = RECEIVABLE_STATUS_PAID
    receivable.paid_at = utcnow()
    receivable.updated_by_user_id = actor_user_id
    append_activity(
        store_id=receivable.store_id,
        entity_type=ENTITY_RECEIVABLE,
        entity_id=receivable.id,
        action=action,
        actor_user_id=actor_user_id,
        details=details,
    )
    sync_service.on_receivable_paid(receivable)


def _record_payment(receivable: Receivable, amount_cents: int, notes: str | None,
                    actor_user_id: int | None, paid_action: str) -> int:
    """
    Append a payment, re-sum, and settle the receivable when the sum
    reaches its amount. Returns the new total paid.
    """
    payment = ReceivablePayment(
        receivable_id=receivable.id,
        amount_cents=amount_cents,
        currency=receivable.currency,
        notes=notes,
        created_by_user_id=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(payment)
    db.session.flush()

    append_activity(
        store_id=receivable.store_id,
        entity_type=ENTITY_RECEIVABLE,
        entity_id=receivable.id,
        action="payment_added",
        actor_user_id=actor_user_id,
        details={"payment_id": payment.id, "amount_cents": amount_cents, "currency": receivable.currency},
    )

    paid_cents = total_paid(receivable.id)
    if paid_cents >= receivable.amount_cents:
        _mark_paid(receivable, actor_user_id, paid_action, {"total_paid_cents": paid_cents})
    return paid_cents


# =============================================================================
# CREATION
# =============================================================================

def _create_receivable(
    *,
    store_id: int,
    actor_user_id: int | None,
    amount_cents: int,
    currency: str | None,
    customer_name: str | None,
    customer_phone: str | None,
    description: str | None,
    order_id: int | None = None,
    initial_payment=None,
) -> Receivable:
    store = require_store(store_id)
    amount_cents = _validate_amount(amount_cents)
    first_payment = _initial_payment(initial_payment)

    def _op():
        order = None
        if order_id is not None:
            order = lock_for_update(
                db.session.query(Order).filter_by(id=order_id, store_id=store.id)
            ).first()
            if not order:
                raise NotFoundError("Order not found", details={"order_id": order_id})
            allowed, reason = sync_service.can_create_receivable(order)
            if not allowed:
                raise InvalidStateError(reason, details={"order_id": order.id, "status": order.status})

        number = allocate_sequence(store.id, COUNTER_RECEIVABLE)
        receivable = Receivable(
            store_id=store.id,
            receivable_number=number,
            customer_name=customer_name,
            customer_phone=customer_phone,
            description=description,
            amount_cents=amount_cents,
            currency=currency or store.currency or current_app.config["DEFAULT_CURRENCY"],
            status=RECEIVABLE_STATUS_PENDING,
            order_id=order.id if order else None,
            created_by_user_id=actor_user_id,
        )
        flush_numbered(receivable, COUNTER_RECEIVABLE)
        append_activity(
            store_id=store.id,
            entity_type=ENTITY_RECEIVABLE,
            entity_id=receivable.id,
            action="created",
            actor_user_id=actor_user_id,
            details={"order_id": receivable.order_id} if receivable.order_id else None,
        )

        decrement = order is not None and sync_service.on_receivable_created(order)
        items = list(order.items or []) if decrement else None
        db.session.commit()
        return receivable, items

    receivable, items = run_with_retry(_op)

    if items is not None:
        sync_service.move_order_stock(receivable.order_id, store.id, items,
                                      SIGN_DECREMENT, actor_user_id)

    if first_payment:
        amount, notes = first_payment

        def _pay():
            locked = _lock_receivable(receivable.id, store.id)
            _record_payment(locked, amount, notes, actor_user_id, paid_action="paid_initial")
            db.session.commit()
            return locked

        receivable = run_with_retry(_pay)

    return receivable


def create_manual_receivable(store_id: int, actor_user_id: int | None, fields: dict) -> Receivable:
    """
    Create a receivable with no order behind it. No stock moves.

    fields: amount_cents (required), customer_name, customer_phone,
    description, currency, initial_payment {"amount_cents", "notes"}
    """
    fields = fields or {}
    if fields.get("amount_cents") is None:
        raise ValidationError("amount_cents is required")
    return _create_receivable(
        store_id=store_id,
        actor_user_id=actor_user_id,
        amount_cents=fields.get("amount_cents"),
        currency=_clean(fields.get("currency")),
        customer_name=_clean(fields.get("customer_name")),
        customer_phone=_clean(fields.get("customer_phone")),
        description=_clean(fields.get("description")),
        initial_payment=fields.get("initial_payment"),
    )


def create_receivable_from_order(order_id: int, store_id: int, actor_user_id: int | None,
                                 options: dict | None = None) -> Receivable:
    """
    Bill a pending order. The order's items leave stock here, once.

    options:
    - amount_cents: overrides the order total without touching the order
    - customer_name / customer_phone: override the order's (None clears)
    - description: defaults to the order message, then "Receivable for order #N"
    - initial_payment: {"amount_cents", "notes"}
    """
    options = options or {}
    order = order_service.get_order(order_id, store_id)

    allowed, reason = sync_service.can_create_receivable(order)
    if not allowed:
        raise InvalidStateError(reason, details={"order_id": order.id, "status": order.status})

    description = (
        _clean(options.get("description"))
        or _clean(order.custom_message)
        or f"Receivable for order #{order.order_number}"
    )
    if "customer_name" in options:
        customer_name = _clean(options["customer_name"])
    else:
        customer_name = order.customer_name
    if "customer_phone" in options:
        customer_phone = _clean(options["customer_phone"])
    else:
        customer_phone = order.customer_phone

    amount = options.get("amount_cents")
    if amount is None:
        amount = order.total_cents

    return _create_receivable(
        store_id=store_id,
        actor_user_id=actor_user_id,
        amount_cents=amount,
        currency=order.currency,
        customer_name=customer_name or "Customer",
        customer_phone=customer_phone,
        description=description,
        order_id=order.id,
        initial_payment=options.get("initial_payment"),
    )


# =============================================================================
# PAYMENTS
# =============================================================================

def add_payment(receivable_id: int, store_id: int, amount_cents: int,
                notes: str | None = None, actor_user_id: int | None = None) -> ReceivableBalance:
    """
    Record a partial payment on a pending receivable.

    When the re-summed total reaches the amount the receivable becomes paid
    and its order (if any) completed. No stock moves here.

    Raises:
        NotFoundError: unknown receivable
        InvalidStateError: receivable is not pending
        ValidationError: amount is not a positive integer
    """
    def _op():
        receivable = _lock_receivable(receivable_id, store_id)
        if receivable.status != RECEIVABLE_STATUS_PENDING:
            raise InvalidStateError(
                "Payments can only be added to pending receivables",
                details={"receivable_id": receivable.id, "status": receivable.status},
            )
        amount = _validate_payment_amount(amount_cents)

        _record_payment(receivable, amount, _clean(notes), actor_user_id, paid_action="status_paid")
        db.session.commit()

    run_with_retry(_op)
    return get_receivable_payments(receivable_id, store_id)


# =============================================================================
# STATUS AND FIELD UPDATES
# =============================================================================

def update_receivable_status(receivable_id: int, store_id: int, new_status: str,
                             actor_user_id: int | None = None) -> Receivable:
    """
    pending -> paid: stamps paid_at and completes the linked order.
    pending -> cancelled: restores the linked order's stock unless that
    order is already cancelled.
    """
    if new_status not in RECEIVABLE_STATUSES:
        raise ValidationError(
            f"Invalid status {new_status!r}. Must be one of {list(RECEIVABLE_STATUSES)}"
        )

    def _op():
        receivable = _lock_receivable(receivable_id, store_id)
        if receivable.status == new_status:
            return receivable, None
        if receivable.status != RECEIVABLE_STATUS_PENDING:
            raise InvalidStateError(
                f"Receivable is {receivable.status}; no further status changes allowed",
                details={"receivable_id": receivable.id, "status": receivable.status},
            )

        restore = None
        if new_status == RECEIVABLE_STATUS_PAID:
            _mark_paid(receivable, actor_user_id, "status_paid")
        else:
            receivable.status = RECEIVABLE_STATUS_CANCELLED
            receivable.paid_at = None
            receivable.updated_by_user_id = actor_user_id
            append_activity(
                store_id=receivable.store_id,
                entity_type=ENTITY_RECEIVABLE,
                entity_id=receivable.id,
                action="status_cancelled",
                actor_user_id=actor_user_id,
            )
            order = sync_service.on_receivable_cancelled(receivable)
            if order is not None:
                restore = (order.id, list(order.items or []))

        db.session.commit()
        return receivable, restore

    receivable, restore = run_with_retry(_op)
    if restore:
        order_id, items = restore
        sync_service.move_order_stock(order_id, store_id, items, SIGN_INCREMENT, actor_user_id)
    return receivable


def update_receivable(receivable_id: int, store_id: int, updates: dict,
                      actor_user_id: int | None = None) -> Receivable:
    """
    Edit customer/description/amount/currency of a pending receivable.
    A "status" key is applied afterwards through update_receivable_status().
    """
    updates = dict(updates or {})
    new_status = updates.pop("status", None)

    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown receivable fields: {sorted(unknown)}")
    if "amount_cents" in updates:
        _validate_amount(updates["amount_cents"])

    if updates:
        def _op():
            receivable = _lock_receivable(receivable_id, store_id)
            if receivable.status != RECEIVABLE_STATUS_PENDING:
                raise InvalidStateError(
                    "Only pending receivables can be edited",
                    details={"receivable_id": receivable.id, "status": receivable.status},
                )
            for key, value in updates.items():
                if key == "amount_cents":
                    receivable.amount_cents = value
                elif key == "currency":
                    receivable.currency = _clean(value) or current_app.config["DEFAULT_CURRENCY"]
                else:
                    setattr(receivable, key, _clean(value))
            receivable.updated_by_user_id = actor_user_id
            append_activity(
                store_id=receivable.store_id,
                entity_type=ENTITY_RECEIVABLE,
                entity_id=receivable.id,
                action="updated",
                actor_user_id=actor_user_id,
                details=updates,
            )
            db.session.commit()

        run_with_retry(_op)

    if new_status is not None:
        return update_receivable_status(receivable_id, store_id, new_status, actor_user_id)
    return get_receivable(receivable_id, store_id)


def update_receivable_items(receivable_id: int, store_id: int, new_items: list[dict],
                            new_total_cents: int, *, update_amount: bool = True,
                            actor_user_id: int | None = None) -> dict:
    """Replace the items of the order behind a receivable (see order_service)."""
    receivable = get_receivable(receivable_id, store_id)
    if not receivable.order_id:
        raise InvalidStateError(
            "Only receivables created from an order have items",
            details={"receivable_id": receivable.id},
        )
    return order_service.replace_order_items(
        receivable.order_id,
        store_id,
        new_items,
        new_total_cents,
        update_amount=update_amount,
        actor_user_id=actor_user_id,
    )
