"""
Admin views over call administrators: their stats and recent tickets.
"""
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..cache import CacheTags, cached_query
from ..config import settings
from ..models.models import Ticket, User
from .aggregates import compute_call_admin_stats, empty_stats
from .permissions import ADMIN, CALL_ADMIN, has_role
from .time_rules import ensure_utc, parse_iso


logger = structlog.get_logger(__name__)

PRIORITY_ORDER = ("Urgent", "High", "Medium", "Low")
DAYS_PER_MONTH = 30


def _avg_tickets_per_month(total: int, first, last) -> float:
    if not total or first is None or last is None:
        return 0
    months = max(1.0, (last - first).total_seconds() / (86400 * DAYS_PER_MONTH))
    return total / months


def _stats_view(stats: dict) -> dict:
    first = parse_iso(stats.get("first_ticket_date"))
    last = parse_iso(stats.get("last_ticket_date"))
    total = stats.get("total_tickets") or 0
    return {
        "total_tickets": total,
        "active_tickets": stats.get("active_tickets") or 0,
        "closed_tickets": stats.get("closed_tickets") or 0,
        "open_tickets": stats.get("open_tickets") or 0,
        "assigned_tickets": stats.get("assigned_tickets") or 0,
        "urgent_priority": stats.get("urgent_priority") or 0,
        "high_priority": stats.get("high_priority") or 0,
        "medium_priority": stats.get("medium_priority") or 0,
        "low_priority": stats.get("low_priority") or 0,
        "avg_tickets_per_month": _avg_tickets_per_month(total, first, last),
        "first_ticket_date": first,
        "last_ticket_date": last,
    }


@cached_query("call-admins", tags=[CacheTags.CALL_ADMINS, CacheTags.TECHNICIANS, CacheTags.TICKETS])
def _call_admin_rows(db: Session):
    rows = db.query(User).filter(User.role == CALL_ADMIN).order_by(User.name.asc()).all()
    return [
        {
            "id": u.id,
            "name": u.name,
            "email": u.email,
            "disabled": bool(u.disabled),
            "total_tickets": (u.stats or {}).get("total_tickets", 0),
            "active_tickets": (u.stats or {}).get("active_tickets", 0),
        }
        for u in rows
    ]


def list_call_admins(db: Session, user: Optional[User]) -> dict:
    if not has_role(user, (ADMIN,)):
        return {"success": False, "error": "Unauthorized", "call_admins": []}
    return {"success": True, "call_admins": _call_admin_rows(db)}


@cached_query("call-admin-stats", tag_args=lambda call_admin_id: [CacheTags.call_admin(call_admin_id)])
def _call_admin_stats(db: Session, call_admin_id: str) -> Optional[dict]:
    call_admin = db.query(User).filter(User.id == call_admin_id, User.role == CALL_ADMIN).first()
    if call_admin is None:
        return None
    saved = call_admin.stats or {}
    if saved.get("updated_at"):
        return _stats_view({**empty_stats(), **saved})

    # No maintained aggregate yet; fold the tickets directly
    tickets = db.query(Ticket).filter(Ticket.created_by == call_admin_id).all()
    return _stats_view(compute_call_admin_stats(tickets))


def get_call_admin_stats(db: Session, user: Optional[User], call_admin_id: str) -> dict:
    if not has_role(user, (ADMIN,)):
        return {"success": False, "error": "Unauthorized"}
    stats = _call_admin_stats(db, str(call_admin_id))
    if stats is None:
        return {"success": False, "error": "Call admin not found"}
    return {"success": True, "stats": stats}


def _highest_priority(machines) -> str:
    priorities = {(m or {}).get("priority") for m in machines or []}
    for priority in PRIORITY_ORDER[:-1]:
        if priority in priorities:
            return priority
    return "Low"


@cached_query(
    "call-admin-tickets",
    tags=[CacheTags.TICKETS],
    tag_args=lambda call_admin_id: [CacheTags.call_admin(call_admin_id)],
)
def _call_admin_tickets(db: Session, call_admin_id: str):
    rows = (
        db.query(Ticket)
        .filter(Ticket.created_by == call_admin_id)
        .order_by(Ticket.created_at.desc())
        .limit(settings.call_admin_ticket_limit)
        .all()
    )
    tickets = []
    for ticket in rows:
        machines = ticket.machines or []
        tickets.append({
            "id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "customer_name": (machines[0].get("customer_name") if machines else None) or "Unknown",
            "contact_person": ticket.contact_person,
            "assigned_to_name": ticket.assigned_to_name,
            "created_at": ensure_utc(ticket.created_at),
            "closed_at": ensure_utc(ticket.closed_at),
            "status": ticket.status,
            "priority": _highest_priority(machines),
            "issue_description": ticket.issue_description or "",
            "additional_notes": ticket.additional_notes,
            "machines": [
                {
                    "machine_id": m.get("machine_id"),
                    "type": m.get("machine_type"),
                    "serial_number": m.get("serial_number"),
                    "priority": m.get("priority"),
                }
                for m in machines
            ],
        })
    return tickets


def get_call_admin_tickets(db: Session, user: Optional[User], call_admin_id: str) -> dict:
    if not has_role(user, (ADMIN,)):
        return {"success": False, "error": "Unauthorized", "tickets": []}
    return {"success": True, "tickets": _call_admin_tickets(db, str(call_admin_id))}
