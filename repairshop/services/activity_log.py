"""Read side of the append-only activity log. Security rows are written by the database
audit trigger only; this module never updates or deletes."""
from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from repairshop.models.activity_log import ActivityLog
from repairshop.tenancy.policy import AUDIT_ACTION, AUDIT_EVENT_TYPE

DEFAULT_LIMIT = 50
MAX_LIMIT = 500


def _blocked_query(db: Session, table: str | None, entity_id: int | None, shop_id: int | None):
    q = db.query(ActivityLog).filter(
        ActivityLog.event_type == AUDIT_EVENT_TYPE,
        ActivityLog.action == AUDIT_ACTION,
    )
    if table is not None:
        q = q.filter(ActivityLog.entity_type == table)
    if entity_id is not None:
        q = q.filter(ActivityLog.entity_id == entity_id)
    if shop_id is not None:
        q = q.filter(ActivityLog.shop_id == shop_id)
    return q


def count_blocked_attempts(
    db: Session,
    *,
    table: str | None = None,
    entity_id: int | None = None,
    shop_id: int | None = None,
) -> int:
    """Number of recorded shop_id change attempts, optionally for one table / row / tenant."""
    q = _blocked_query(db, table, entity_id, shop_id)
    return q.with_entities(func.count(ActivityLog.id)).scalar() or 0


def recent_blocked_attempts(
    db: Session,
    limit: int = DEFAULT_LIMIT,
    *,
    shop_id: int | None = None,
) -> list[ActivityLog]:
    """Newest first. shop_id filters to attempts against rows owned by that tenant."""
    limit = max(1, min(int(limit or DEFAULT_LIMIT), MAX_LIMIT))
    q = _blocked_query(db, None, None, shop_id)
    return q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()


def describe(entry: ActivityLog) -> str:
    """One line for CLI output."""
    d = entry.details or {}
    when = entry.created_at.isoformat() if entry.created_at else "—"
    return (
        f"{when} {entry.entity_type}#{entry.entity_id}: "
        f"{d.get('old_shop_id')} -> {d.get('attempted_shop_id')} [{entry.severity}]"
    )
