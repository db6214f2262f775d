# Overview: Paging and status-filter helpers shared by the per-store list operations.

from __future__ import annotations

from ..errors import ValidationError


DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def parse_status_filter(status, allowed) -> list[str] | None:
    """
    Normalize a status filter: None/"" means no filter; a comma-separated
    string or a list selects several statuses. Unknown values raise.
    """
    if status is None or status == "":
        return None
    if isinstance(status, str):
        values = [part.strip() for part in status.split(",") if part.strip()]
    elif isinstance(status, (list, tuple)):
        values = [str(part).strip() for part in status if str(part).strip()]
    else:
        raise ValidationError("status must be a string or a list of strings")

    unknown = [value for value in values if value not in allowed]
    if unknown:
        raise ValidationError(
            f"Invalid status filter {unknown}. Must be among {list(allowed)}"
        )
    return values or None


def paginate(query, limit: int | None, offset: int | None) -> dict:
    """
    Run an ordered query one page at a time.

    limit defaults to 20 and is clamped to 1..100; offset is floored at 0.
    Returns {"items": [to_dict()...], "count", "total", "limit", "offset"}.
    """
    limit = DEFAULT_LIMIT if limit is None else min(max(1, limit), MAX_LIMIT)
    offset = 0 if offset is None else max(0, offset)

    total = query.order_by(None).count()
    rows = query.offset(offset).limit(limit).all()
    return {
        "items": [row.to_dict() for row in rows],
        "count": len(rows),
        "total": total,
        "limit": limit,
        "offset": offset,
    }
