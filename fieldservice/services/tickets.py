"""
Ticket lifecycle: creation, admin edits, the two technician close paths and
the lookups used by the ticket forms.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..cache import CacheTags, cached_query, revalidate_cache
from ..models.models import Customer, Machine, MachineWorkLog, Ticket, User
from ..schemas.tickets import TechnicianUpdate, TicketCreate, TicketUpdate
from .aggregates import (
    update_call_admin_aggregates_on_create,
    update_call_admin_aggregates_on_status_change,
)
from .permissions import CALL_ADMIN, TECHNICIAN, TICKET_ADMIN_ROLES, has_role, is_assigned_technician, is_technician
from .time_rules import day_bounds_utc, ensure_utc, local_date_stamp, utc_now
from .validation import coerce, first_error_message


logger = structlog.get_logger(__name__)


def ticket_to_dict(ticket: Ticket) -> Dict[str, Any]:
    return {
        "id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "machines": list(ticket.machines or []),
        "issue_description": ticket.issue_description,
        "contact_person": ticket.contact_person,
        "assigned_to": ticket.assigned_to,
        "assigned_to_name": ticket.assigned_to_name,
        "status": ticket.status,
        "scheduled_visit_date": ensure_utc(ticket.scheduled_visit_date),
        "additional_notes": ticket.additional_notes,
        "created_by": ticket.created_by,
        "created_at": ensure_utc(ticket.created_at),
        "updated_at": ensure_utc(ticket.updated_at),
        "closed_at": ensure_utc(ticket.closed_at),
        "arrival_time": ensure_utc(ticket.arrival_time),
        "departure_time": ensure_utc(ticket.departure_time),
        "hours_worked": ticket.hours_worked,
        "work_performed": ticket.work_performed,
        "outcome": ticket.outcome,
        "parts_used": ticket.parts_used,
        "maintenance_recommendation": ticket.maintenance_recommendation,
    }


def generate_ticket_number(db: Session, now: Optional[datetime] = None) -> str:
    """
    Build ``TKT-YYYYMMDD-NNN`` for the business-local day containing ``now``.

    NNN is one more than the number of tickets already created that day. Two
    concurrent creates can read the same count and produce the same number.
    """
    now = now or utc_now()
    start, end = day_bounds_utc(now)
    today_count = (
        db.query(func.count(Ticket.id))
        .filter(Ticket.created_at >= start, Ticket.created_at < end)
        .scalar()
    ) or 0
    return f"TKT-{local_date_stamp(now)}-{today_count + 1:03d}"


def _resolve_user_name(db: Session, user_id: Optional[str]) -> Optional[str]:
    if not user_id:
        return None
    row = db.query(User).filter(User.id == str(user_id)).first()
    return row.name if row else None


def _creator_is_call_admin(db: Session, creator_id: Optional[str]) -> bool:
    if not creator_id:
        return False
    creator = db.query(User).filter(User.id == str(creator_id)).first()
    return creator is not None and creator.role == CALL_ADMIN


def _load_assigned_ticket(db: Session, user: Optional[User], ticket_id: str):
    """Return (ticket, error) for the technician-only paths."""
    if not is_technician(user):
        return None, "Unauthorized"
    ticket = db.query(Ticket).filter(Ticket.id == str(ticket_id)).first()
    if not ticket:
        return None, "Ticket not found"
    if not is_assigned_technician(user, ticket):
        return None, "This ticket is not assigned to you"
    return ticket, None


def _follow_status_change(db: Session, ticket: Ticket, old_status: str) -> None:
    if old_status and ticket.status != old_status and _creator_is_call_admin(db, ticket.created_by):
        update_call_admin_aggregates_on_status_change(db, ticket.created_by, old_status, ticket.status)


# ---------- Lookups for the ticket forms ----------

@cached_query("customers-for-tickets", tags=[CacheTags.CUSTOMERS])
def get_customers_for_tickets(db: Session) -> List[dict]:
    rows = (
        db.query(Customer)
        .filter(Customer.is_disabled.is_(False))
        .order_by(Customer.company_name.asc())
        .all()
    )
    return [{"id": c.id, "company_name": c.company_name, "contact_person": c.contact_person} for c in rows]


def get_machines_for_customer(db: Session, user: Optional[User], customer_id: str) -> List[dict]:
    if not has_role(user, TICKET_ADMIN_ROLES):
        return []
    rows = db.query(Machine).filter(Machine.customer_id == str(customer_id)).all()
    return [
        {"id": m.id, "customer_id": m.customer_id, "type": m.type, "serial_number": m.serial_number}
        for m in rows
    ]


@cached_query("technicians-for-assignment", tags=[CacheTags.TECHNICIANS])
def get_technicians_for_assignment(db: Session) -> List[dict]:
    rows = (
        db.query(User)
        .filter(User.role == TECHNICIAN, User.disabled.is_(False))
        .order_by(User.name.asc())
        .all()
    )
    return [{"id": u.id, "name": u.name} for u in rows]


def list_tickets(db: Session, user: Optional[User], status: Optional[str] = None) -> List[dict]:
    """
    Tickets visible to ``user``, newest first.

    Technicians only see tickets assigned to them; other roles see all.
    """
    if user is None:
        return []
    query = db.query(Ticket)
    if user.role == TECHNICIAN:
        query = query.filter(Ticket.assigned_to == user.id)
    if status:
        query = query.filter(Ticket.status == status)
    return [ticket_to_dict(t) for t in query.order_by(Ticket.created_at.desc()).all()]


def get_ticket(db: Session, user: Optional[User], ticket_id: str) -> dict:
    if user is None:
        return {"success": False, "error": "Unauthorized"}
    ticket = db.query(Ticket).filter(Ticket.id == str(ticket_id)).first()
    if not ticket:
        return {"success": False, "error": "Ticket not found"}
    if user.role == TECHNICIAN and not is_assigned_technician(user, ticket):
        return {"success": False, "error": "This ticket is not assigned to you"}
    return {"success": True, "ticket": ticket_to_dict(ticket)}


# ---------- Mutations ----------

def create_ticket(db: Session, user: Optional[User], data: Any) -> dict:
    """
    Create a ticket for one or more customer machines.

    Args:
        db: Database session
        user: Caller; must be admin, call_admin or management
        data: ``TicketCreate`` or an equivalent dict

    Returns:
        {"success": True, "ticket_id", "ticket_number"} or {"success": False, "error"}
    """
    if not has_role(user, TICKET_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    try:
        payload = coerce(TicketCreate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    try:
        now = utc_now()
        ticket = Ticket(
            ticket_number=generate_ticket_number(db, now),
            machines=[m.model_dump(mode="json") for m in payload.machines],
            issue_description=payload.issue_description,
            contact_person=payload.contact_person,
            assigned_to=payload.assigned_to,
            assigned_to_name=_resolve_user_name(db, payload.assigned_to),
            status="Assigned" if payload.assigned_to else "Open",
            scheduled_visit_date=ensure_utc(payload.scheduled_visit_date),
            additional_notes=payload.additional_notes,
            created_by=user.id,
            created_at=now,
            updated_at=now,
        )
        db.add(ticket)
        db.commit()
        db.refresh(ticket)
    except Exception as e:
        db.rollback()
        logger.exception("ticket_create_failed", user_id=user.id)
        return {"success": False, "error": str(e) or "Failed to create ticket"}

    logger.info(
        "ticket_created",
        ticket_id=ticket.id,
        ticket_number=ticket.ticket_number,
        status=ticket.status,
        created_by=user.id,
    )
    if user.role == CALL_ADMIN:
        update_call_admin_aggregates_on_create(db, user.id, ticket)

    revalidate_cache([
        CacheTags.TICKETS,
        CacheTags.TECHNICIANS,
        CacheTags.REPORTS,
        CacheTags.call_admin(user.id),
    ])
    return {"success": True, "ticket_id": ticket.id, "ticket_number": ticket.ticket_number}


def update_ticket(db: Session, user: Optional[User], ticket_id: str, data: Any) -> dict:
    """
    Apply an admin-side partial edit.

    Assigning a technician without an explicit status moves the ticket to
    Assigned; unassigning an Assigned ticket without an explicit status moves
    it back to Open. Reassigning a Closed ticket reopens it as Assigned.
    """
    if not has_role(user, TICKET_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    ticket = db.query(Ticket).filter(Ticket.id == str(ticket_id)).first()
    if not ticket:
        return {"success": False, "error": "Ticket not found"}
    try:
        payload = coerce(TicketUpdate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    changes = payload.model_dump(exclude_unset=True)
    old_status = ticket.status
    explicit_status = payload.status.value if payload.status is not None else None

    try:
        for field in ("issue_description", "contact_person", "additional_notes"):
            if field in changes and (changes[field] is not None or field == "additional_notes"):
                setattr(ticket, field, changes[field])
        if "scheduled_visit_date" in changes:
            ticket.scheduled_visit_date = ensure_utc(payload.scheduled_visit_date)

        new_status = explicit_status or old_status
        if "assigned_to" in changes:
            ticket.assigned_to = payload.assigned_to
            ticket.assigned_to_name = _resolve_user_name(db, payload.assigned_to)
            if explicit_status is None:
                if payload.assigned_to:
                    new_status = "Assigned"
                elif old_status == "Assigned":
                    new_status = "Open"

        if new_status == "Assigned" and not ticket.assigned_to:
            db.rollback()
            return {"success": False, "error": "A technician must be assigned"}

        now = utc_now()
        ticket.status = new_status
        if new_status == "Closed" and old_status != "Closed":
            ticket.closed_at = now
        elif new_status != "Closed":
            ticket.closed_at = None
        ticket.updated_at = now
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("ticket_update_failed", ticket_id=ticket_id)
        return {"success": False, "error": str(e) or "Failed to update ticket"}

    logger.info("ticket_updated", ticket_id=ticket.id, old_status=old_status, new_status=ticket.status, user_id=user.id)
    _follow_status_change(db, ticket, old_status)

    tags = [CacheTags.TICKETS, CacheTags.TECHNICIANS, CacheTags.REPORTS]
    if ticket.created_by:
        tags.append(CacheTags.call_admin(ticket.created_by))
    revalidate_cache(tags)
    return {"success": True}


def close_ticket(db: Session, user: Optional[User], ticket_id: str) -> dict:
    """
    Close a ticket from the technician side.

    Refused unless every machine on the ticket has a work log with both
    ``work_performed`` and ``outcome`` filled in.
    """
    ticket, error = _load_assigned_ticket(db, user, ticket_id)
    if error:
        return {"success": False, "error": error}

    logs = db.query(MachineWorkLog).filter(MachineWorkLog.ticket_id == ticket.id).all()
    logs_by_machine = {log.machine_id: log for log in logs}
    for machine in ticket.machines or []:
        log = logs_by_machine.get(machine.get("machine_id"))
        if log is None or not log.work_performed or not log.outcome:
            return {"success": False, "error": "All machines must have work details logged before closing"}

    old_status = ticket.status
    try:
        now = utc_now()
        if old_status != "Closed":
            ticket.status = "Closed"
            ticket.closed_at = now
        ticket.updated_at = now
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("ticket_close_failed", ticket_id=ticket_id)
        return {"success": False, "error": str(e) or "Failed to close ticket"}

    logger.info("ticket_closed", ticket_id=ticket.id, ticket_number=ticket.ticket_number, technician_id=user.id)
    _follow_status_change(db, ticket, old_status)

    revalidate_cache([
        CacheTags.TICKETS,
        CacheTags.WORK_LOGS,
        CacheTags.REPORTS,
        CacheTags.call_admin(ticket.created_by),
    ])
    return {"success": True}


def technician_update_ticket(db: Session, user: Optional[User], ticket_id: str, data: Any) -> dict:
    """
    Record visit details directly on the ticket.

    Setting ``departure_time`` closes the ticket without the per-machine work
    log check that ``close_ticket`` applies.
    """
    ticket, error = _load_assigned_ticket(db, user, ticket_id)
    if error:
        return {"success": False, "error": error}
    try:
        payload = coerce(TechnicianUpdate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    changes = payload.model_dump(exclude_unset=True)
    old_status = ticket.status
    try:
        now = utc_now()
        if payload.arrival_time is not None:
            ticket.arrival_time = ensure_utc(payload.arrival_time)
        if payload.hours_worked is not None:
            ticket.hours_worked = payload.hours_worked
        if payload.work_performed is not None:
            ticket.work_performed = payload.work_performed
        if payload.outcome is not None:
            ticket.outcome = payload.outcome
        if "parts_used" in changes:
            ticket.parts_used = [p.model_dump(mode="json") for p in payload.parts_used or []]
        if payload.maintenance_recommendation is not None:
            ticket.maintenance_recommendation = payload.maintenance_recommendation.model_dump(mode="json")
        if payload.departure_time is not None:
            ticket.departure_time = ensure_utc(payload.departure_time)
            if ticket.status != "Closed":
                ticket.status = "Closed"
                ticket.closed_at = now
        ticket.updated_at = now
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("technician_ticket_update_failed", ticket_id=ticket_id)
        return {"success": False, "error": str(e) or "Failed to update ticket"}

    logger.info("ticket_visit_recorded", ticket_id=ticket.id, status=ticket.status, technician_id=user.id)
    _follow_status_change(db, ticket, old_status)

    revalidate_cache([
        CacheTags.TICKETS,
        CacheTags.REPORTS,
        CacheTags.call_admin(ticket.created_by),
    ])
    return {"success": True}
