"""
Per-machine work logs.

There is at most one log per (ticket, machine); every write finds the existing
row or creates it, so repeated submissions update in place.
"""
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..cache import CacheTags, cached_query, revalidate_cache
from ..models.models import MachineWorkLog, Ticket, User
from ..schemas.tickets import BulkWorkLog, TechnicianUpdate
from .permissions import is_assigned_technician, is_technician
from .time_rules import ensure_utc, parse_iso, utc_now
from .validation import coerce, first_error_message


logger = structlog.get_logger(__name__)


def _find_ticket_machine(ticket: Ticket, machine_id: str) -> Optional[dict]:
    for machine in ticket.machines or []:
        if machine.get("machine_id") == machine_id:
            return machine
    return None


def _find_or_create_log(db: Session, ticket: Ticket, ticket_machine: dict, now) -> MachineWorkLog:
    log = (
        db.query(MachineWorkLog)
        .filter(
            MachineWorkLog.ticket_id == ticket.id,
            MachineWorkLog.machine_id == ticket_machine["machine_id"],
        )
        .first()
    )
    if log is None:
        log = MachineWorkLog(
            ticket_id=ticket.id,
            machine_id=ticket_machine["machine_id"],
            machine_type=ticket_machine.get("machine_type"),
            machine_serial_number=ticket_machine.get("serial_number"),
            parts_used=[],
            created_at=now,
        )
        db.add(log)
    return log


def _check_assignment(db: Session, user: Optional[User], ticket_id: str):
    if not is_technician(user):
        return None, "Unauthorized"
    ticket = db.query(Ticket).filter(Ticket.id == str(ticket_id)).first()
    if not ticket:
        return None, "Ticket not found"
    if not is_assigned_technician(user, ticket):
        return None, "This ticket is not assigned to you"
    return ticket, None


def _work_log_tags(ticket_id: str):
    return [CacheTags.WORK_LOGS, CacheTags.REPORTS, CacheTags.ticket_work_logs(ticket_id)]


def add_work_log_entry(db: Session, user: Optional[User], ticket_id: str, machine_id: str, data: Any) -> dict:
    """
    Record or update the work log for one machine on a ticket.

    Only fields present in ``data`` are written to an existing log.
    """
    ticket, error = _check_assignment(db, user, ticket_id)
    if error:
        return {"success": False, "error": error}
    try:
        payload = coerce(TechnicianUpdate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    ticket_machine = _find_ticket_machine(ticket, machine_id)
    if ticket_machine is None:
        return {"success": False, "error": "Machine not found in ticket"}

    changes = payload.model_dump(exclude_unset=True)
    try:
        now = utc_now()
        log = _find_or_create_log(db, ticket, ticket_machine, now)
        if "arrival_time" in changes:
            log.arrival_time = ensure_utc(payload.arrival_time)
        if "departure_time" in changes:
            log.departure_time = ensure_utc(payload.departure_time)
        if payload.hours_worked is not None:
            log.hours_worked = payload.hours_worked
        if payload.work_performed is not None:
            log.work_performed = payload.work_performed
        if payload.outcome is not None:
            log.outcome = payload.outcome
        if "parts_used" in changes:
            log.parts_used = [p.model_dump(mode="json") for p in payload.parts_used or []]
        if payload.maintenance_recommendation is not None:
            log.maintenance_recommendation = payload.maintenance_recommendation.model_dump(mode="json")
        log.recorded_by = user.id
        log.updated_at = now
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("work_log_save_failed", ticket_id=ticket_id, machine_id=machine_id)
        return {"success": False, "error": str(e) or "Failed to add work log entry"}

    logger.info("work_log_saved", ticket_id=ticket.id, machine_id=machine_id, technician_id=user.id)
    revalidate_cache(_work_log_tags(ticket.id))
    return {"success": True}


def add_bulk_work_log_entries(db: Session, user: Optional[User], ticket_id: str, data: Any) -> dict:
    """
    Record one visit covering several machines.

    Arrival, departure and hours are shared by every entry; work details are
    per machine. Entries for machines that are not on the ticket are skipped.
    All rows are written in a single commit.

    Returns:
        {"success": True, "count": <entries written>} or {"success": False, "error"}
    """
    ticket, error = _check_assignment(db, user, ticket_id)
    if error:
        return {"success": False, "error": error}
    try:
        payload = coerce(BulkWorkLog, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    arrival = ensure_utc(payload.arrival_time)
    departure = ensure_utc(payload.departure_time)
    processed = 0
    try:
        now = utc_now()
        for entry in payload.machine_work_logs:
            ticket_machine = _find_ticket_machine(ticket, entry.machine_id)
            if ticket_machine is None:
                logger.warning("bulk_work_log_machine_skipped", ticket_id=ticket.id, machine_id=entry.machine_id)
                continue

            log = _find_or_create_log(db, ticket, ticket_machine, now)
            log.arrival_time = arrival
            log.departure_time = departure
            log.hours_worked = payload.hours_worked
            log.work_performed = entry.work_performed
            log.outcome = entry.outcome
            log.repairs = entry.repairs
            log.parts_used = [p.model_dump(mode="json") for p in entry.parts_used or []]
            recommendation = entry.maintenance_recommendation
            if recommendation is not None and recommendation.date and recommendation.notes:
                log.maintenance_recommendation = recommendation.model_dump(mode="json")
            log.recorded_by = user.id
            log.updated_at = now
            # New rows must be visible to the lookup for a repeated machine id
            db.flush()
            processed += 1
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("bulk_work_log_failed", ticket_id=ticket_id)
        return {"success": False, "error": str(e) or "Failed to add work log entries"}

    logger.info("bulk_work_logs_saved", ticket_id=ticket.id, count=processed, technician_id=user.id)
    revalidate_cache(_work_log_tags(ticket.id))
    return {"success": True, "count": processed}


def work_log_to_dict(log: MachineWorkLog) -> Dict[str, Any]:
    recommendation = log.maintenance_recommendation
    return {
        "id": log.id,
        "ticket_id": log.ticket_id,
        "machine_id": log.machine_id,
        "machine_type": log.machine_type,
        "machine_serial_number": log.machine_serial_number,
        "recorded_by": log.recorded_by,
        "work_performed": log.work_performed or "",
        "outcome": log.outcome or "",
        "repairs": log.repairs or "",
        "arrival_time": ensure_utc(log.arrival_time),
        "departure_time": ensure_utc(log.departure_time),
        "hours_worked": log.hours_worked or 0,
        "parts_used": list(log.parts_used or []),
        "maintenance_recommendation": {
            "date": parse_iso(recommendation.get("date")),
            "notes": recommendation.get("notes") or "",
        } if recommendation else None,
        "created_at": ensure_utc(log.created_at),
        "updated_at": ensure_utc(log.updated_at),
    }


@cached_query("ticket-work-logs", tags=[CacheTags.WORK_LOGS], tag_args=lambda ticket_id: [CacheTags.ticket_work_logs(ticket_id)])
def _work_logs_for_ticket(db: Session, ticket_id: str):
    rows = (
        db.query(MachineWorkLog)
        .filter(MachineWorkLog.ticket_id == ticket_id)
        .order_by(MachineWorkLog.created_at.asc())
        .all()
    )
    return [work_log_to_dict(row) for row in rows]


def get_work_logs_for_ticket(db: Session, user: Optional[User], ticket_id: str) -> dict:
    if user is None:
        return {"success": False, "error": "Unauthorized"}
    try:
        return {"success": True, "work_logs": _work_logs_for_ticket(db, str(ticket_id))}
    except Exception as e:
        logger.exception("work_logs_fetch_failed", ticket_id=ticket_id)
        return {"success": False, "error": str(e) or "Failed to fetch work logs"}
