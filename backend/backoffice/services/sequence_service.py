# Overview: Service-layer operations for per-store sequence numbers; encapsulates business logic and database work.

"""
Per-store gap-free sequences.

A counter is never stored. The next value is derived as
COALESCE(MAX(number), 0) + 1 over the rows that already carry one, while the
store lock from acquire_store_lock is held, so the caller MUST insert the
row carrying the number in the same transaction before committing.

The unique (store_id, number) constraint on each table is the backstop:
a violation means a caller allocated outside the lock and is surfaced as
ConflictError, never silently renumbered.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import Order, Receivable, Sale
from .concurrency import acquire_store_lock


COUNTER_ORDER = "order"
COUNTER_RECEIVABLE = "receivable"
COUNTER_SALE = "sale"

# counter name -> (model, numbered column)
_COUNTERS = {
    COUNTER_ORDER: (Order, Order.order_number),
    COUNTER_RECEIVABLE: (Receivable, Receivable.receivable_number),
    COUNTER_SALE: (Sale, Sale.sale_number),
}


def _resolve_counter(counter_name: str):
    try:
        return _COUNTERS[counter_name]
    except KeyError:
        raise ValidationError(
            f"Unknown counter {counter_name!r}. Must be one of {sorted(_COUNTERS)}"
        ) from None


def current_value(store_id: int, counter_name: str) -> int:
    """Highest number issued so far for (store, counter); 0 when none."""
    model, column = _resolve_counter(counter_name)
    return (
        db.session.query(func.coalesce(func.max(column), 0))
        .filter(model.store_id == store_id)
        .scalar()
    )


def allocate_sequence(store_id: int, counter_name: str) -> int:
    """
    Allocate the next number for (store, counter).

    Takes the store lock first; calling it again in the same transaction is
    harmless (the advisory lock is re-entrant, SQLite already holds the
    write lock).
    """
    if not store_id:
        raise ValidationError("store_id is required")
    _resolve_counter(counter_name)

    acquire_store_lock(store_id)
    return current_value(store_id, counter_name) + 1


def flush_numbered(row, counter_name: str) -> None:
    """
    Flush a freshly numbered row, converting a uniqueness violation on the
    sequence constraint into ConflictError.
    """
    store_id = row.store_id
    db.session.add(row)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.info(
            "Sequence backstop fired for %s in store %s", counter_name, store_id
        )
        raise ConflictError(
            f"Duplicate {counter_name} number for store",
            details={"store_id": store_id, "counter": counter_name},
        ) from exc
