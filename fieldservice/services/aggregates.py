"""
Call-admin ticket statistics.

Each call_admin user carries a denormalized ``stats`` document summarizing the
tickets they created. It is maintained incrementally on ticket create and on
status changes, and can be rebuilt from the tickets table when it drifts.
"""
from typing import Any, Dict, Iterable, Optional

import structlog
from sqlalchemy.orm import Session

from ..cache import CacheTags, revalidate_cache
from ..models.models import Ticket, User
from .time_rules import ensure_utc, to_iso, utc_now


logger = structlog.get_logger(__name__)


STATUS_COUNTERS = {
    "Open": "open_tickets",
    "Assigned": "assigned_tickets",
    "Closed": "closed_tickets",
}

PRIORITY_COUNTERS = {
    "Urgent": "urgent_priority",
    "High": "high_priority",
    "Medium": "medium_priority",
    "Low": "low_priority",
}

COUNTER_FIELDS = (
    "total_tickets",
    "open_tickets",
    "assigned_tickets",
    "closed_tickets",
    "active_tickets",
    "urgent_priority",
    "high_priority",
    "medium_priority",
    "low_priority",
)


def empty_stats() -> Dict[str, Any]:
    stats: Dict[str, Any] = {field: 0 for field in COUNTER_FIELDS}
    stats.update({"first_ticket_date": None, "last_ticket_date": None, "updated_at": None})
    return stats


def _current_stats(user: User) -> Dict[str, Any]:
    stats = empty_stats()
    stats.update(user.stats or {})
    return stats


def _tally_priorities(stats: Dict[str, Any], machines: Optional[Iterable[dict]]) -> None:
    for machine in machines or []:
        field = PRIORITY_COUNTERS.get((machine or {}).get("priority"))
        if field:
            stats[field] = (stats.get(field) or 0) + 1


def _lock_user(db: Session, user_id: str) -> Optional[User]:
    # FOR UPDATE serializes concurrent increments where the backend supports row locks
    return db.query(User).filter(User.id == str(user_id)).with_for_update().first()


def update_call_admin_aggregates_on_create(db: Session, call_admin_id: str, ticket: Ticket) -> bool:
    """
    Fold a newly created ticket into its creator's stats.

    Best effort: any failure is logged and swallowed so the ticket write that
    triggered it still succeeds.

    Returns:
        True when the stats were written
    """
    try:
        user = _lock_user(db, call_admin_id)
        if user is None:
            logger.warning("aggregate_user_missing", user_id=call_admin_id, ticket_id=ticket.id)
            return False

        stats = _current_stats(user)
        status_field = STATUS_COUNTERS.get(ticket.status, "open_tickets")
        stats["total_tickets"] = (stats["total_tickets"] or 0) + 1
        stats[status_field] = (stats[status_field] or 0) + 1
        stats["active_tickets"] = (stats["open_tickets"] or 0) + (stats["assigned_tickets"] or 0)
        _tally_priorities(stats, ticket.machines)

        created = to_iso(ticket.created_at or utc_now())
        stats["last_ticket_date"] = created
        if not stats.get("first_ticket_date"):
            stats["first_ticket_date"] = created
        stats["updated_at"] = to_iso(utc_now())

        user.stats = stats
        db.commit()
        return True
    except Exception:
        db.rollback()
        logger.exception("aggregate_create_update_failed", user_id=call_admin_id, ticket_id=getattr(ticket, "id", None))
        return False


def update_call_admin_aggregates_on_status_change(db: Session, call_admin_id: str, old_status: str, new_status: str) -> bool:
    """Move one ticket between status counters. Best effort, like the create path."""
    try:
        user = _lock_user(db, call_admin_id)
        if user is None:
            return False

        stats = _current_stats(user)
        old_field = STATUS_COUNTERS.get(old_status)
        new_field = STATUS_COUNTERS.get(new_status)
        if old_field:
            stats[old_field] = max(0, (stats[old_field] or 0) - 1)
        if new_field:
            stats[new_field] = (stats[new_field] or 0) + 1
        stats["active_tickets"] = (stats["open_tickets"] or 0) + (stats["assigned_tickets"] or 0)
        stats["updated_at"] = to_iso(utc_now())

        user.stats = stats
        db.commit()
        return True
    except Exception:
        db.rollback()
        logger.exception(
            "aggregate_status_update_failed",
            user_id=call_admin_id,
            old_status=old_status,
            new_status=new_status,
        )
        return False


def compute_call_admin_stats(tickets: Iterable[Ticket]) -> Dict[str, Any]:
    """Fold a call admin's tickets into a fresh stats document."""
    stats = empty_stats()
    created_dates = []
    for ticket in tickets:
        stats["total_tickets"] += 1
        field = STATUS_COUNTERS.get(ticket.status)
        if field:
            stats[field] += 1
        _tally_priorities(stats, ticket.machines)
        if ticket.created_at is not None:
            created_dates.append(ensure_utc(ticket.created_at))

    stats["active_tickets"] = stats["open_tickets"] + stats["assigned_tickets"]
    if created_dates:
        stats["first_ticket_date"] = to_iso(min(created_dates))
        stats["last_ticket_date"] = to_iso(max(created_dates))
    return stats


def recalculate_call_admin_aggregates(db: Session, call_admin_id: str) -> dict:
    """
    Rebuild a call admin's stats from every ticket they created.

    Used to repair drift left by the best-effort incremental updates.
    """
    try:
        user = _lock_user(db, call_admin_id)
        if user is None:
            return {"success": False, "error": "User not found"}

        tickets = db.query(Ticket).filter(Ticket.created_by == str(call_admin_id)).all()
        stats = compute_call_admin_stats(tickets)
        stats["updated_at"] = to_iso(utc_now())
        user.stats = stats
        db.commit()
        logger.info("aggregates_recalculated", user_id=call_admin_id, total_tickets=stats["total_tickets"])
        revalidate_cache([CacheTags.CALL_ADMINS, CacheTags.call_admin(str(call_admin_id))])
        return {"success": True}
    except Exception as e:
        db.rollback()
        logger.exception("aggregate_recalculation_failed", user_id=call_admin_id)
        return {"success": False, "error": str(e)}
