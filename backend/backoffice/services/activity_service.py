# Overview: Service-layer operations for the activity log; append-only audit entries.

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import ActivityLog

"""
Activity log invariants

- Append-only; no updates or deletes.
- No domain/business logic in the log itself.
- Entries are written inside the same DB transaction as the change they
  record.
"""

ENTITY_RECEIVABLE = "receivable"
ENTITY_SALE = "sale"
ENTITY_ORDER = "order"


def append_activity(
    *,
    store_id: int,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_user_id: int | None = None,
    details: Optional[dict] = None,
) -> ActivityLog:
    entry = ActivityLog(
        store_id=store_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        details=details or {},
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def get_activity(entity_type: str, entity_id: int, store_id: int | None = None) -> list[ActivityLog]:
    """Entries for one entity, newest first."""
    query = db.session.query(ActivityLog).filter_by(entity_type=entity_type, entity_id=entity_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).all()
