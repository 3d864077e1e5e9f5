from typing import Any, List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..cache import CacheTags, cached_query, revalidate_cache
from ..models.models import Customer, Machine, Ticket, User
from ..schemas.machines import MachineCreate, MachineUpdate
from .permissions import REPORT_ROLES, has_role
from .time_rules import ensure_utc, utc_now
from .validation import coerce, first_error_message


logger = structlog.get_logger(__name__)

# Machines and parts are managed by the same roles that see reports
MACHINE_ADMIN_ROLES = REPORT_ROLES


def machine_to_dict(machine: Machine, customer_name: Optional[str] = None) -> dict:
    return {
        "id": machine.id,
        "customer_id": machine.customer_id,
        "customer_name": customer_name,
        "type": machine.type,
        "serial_number": machine.serial_number,
        "installation_date": ensure_utc(machine.installation_date),
        "location": machine.location,
        "notes": machine.notes,
        "created_at": ensure_utc(machine.created_at),
        "updated_at": ensure_utc(machine.updated_at),
    }


@cached_query("machines", tags=[CacheTags.MACHINES, CacheTags.CUSTOMERS])
def get_machines(db: Session) -> List[dict]:
    names = {c.id: c.company_name for c in db.query(Customer).all()}
    rows = db.query(Machine).order_by(Machine.serial_number.asc()).all()
    return [machine_to_dict(m, names.get(m.customer_id)) for m in rows]


def _serial_taken(db: Session, serial_number: str, exclude_id: Optional[str] = None) -> bool:
    query = db.query(Machine).filter(Machine.serial_number == serial_number)
    if exclude_id:
        query = query.filter(Machine.id != exclude_id)
    return query.first() is not None


def create_machine(db: Session, user: Optional[User], data: Any) -> dict:
    if not has_role(user, MACHINE_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    try:
        payload = coerce(MachineCreate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    if db.query(Customer).filter(Customer.id == payload.customer_id).first() is None:
        return {"success": False, "error": "Customer not found"}
    if _serial_taken(db, payload.serial_number):
        return {"success": False, "error": "A machine with this serial number already exists"}

    try:
        now = utc_now()
        machine = Machine(
            customer_id=payload.customer_id,
            type=payload.type.value,
            serial_number=payload.serial_number,
            installation_date=ensure_utc(payload.installation_date),
            location=payload.location,
            notes=payload.notes,
            created_at=now,
            updated_at=now,
        )
        db.add(machine)
        db.commit()
        db.refresh(machine)
    except Exception as e:
        db.rollback()
        logger.exception("machine_create_failed")
        return {"success": False, "error": str(e) or "Failed to create machine"}

    logger.info("machine_created", machine_id=machine.id, serial_number=machine.serial_number)
    revalidate_cache([CacheTags.MACHINES])
    return {"success": True, "machine_id": machine.id}


def update_machine(db: Session, user: Optional[User], machine_id: str, data: Any) -> dict:
    if not has_role(user, MACHINE_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    machine = db.query(Machine).filter(Machine.id == str(machine_id)).first()
    if not machine:
        return {"success": False, "error": "Machine not found"}
    try:
        payload = coerce(MachineUpdate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("serial_number") and _serial_taken(db, changes["serial_number"], exclude_id=machine.id):
        return {"success": False, "error": "A machine with this serial number already exists"}
    if changes.get("customer_id") and db.query(Customer).filter(Customer.id == changes["customer_id"]).first() is None:
        return {"success": False, "error": "Customer not found"}

    try:
        for field in ("customer_id", "serial_number"):
            if changes.get(field):
                setattr(machine, field, changes[field])
        if payload.type is not None:
            machine.type = payload.type.value
        if "installation_date" in changes:
            machine.installation_date = ensure_utc(payload.installation_date)
        for field in ("location", "notes"):
            if field in changes:
                setattr(machine, field, changes[field] or None)
        machine.updated_at = utc_now()
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("machine_update_failed", machine_id=machine_id)
        return {"success": False, "error": str(e) or "Failed to update machine"}

    revalidate_cache([CacheTags.MACHINES])
    return {"success": True}


def _machine_on_any_ticket(db: Session, machine_id: str) -> bool:
    # Snapshots live in a JSON column, so the scan happens here
    for (machines,) in db.query(Ticket.machines).yield_per(500):
        if any((m or {}).get("machine_id") == machine_id for m in machines or []):
            return True
    return False


def delete_machine(db: Session, user: Optional[User], machine_id: str) -> dict:
    if not has_role(user, MACHINE_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    machine = db.query(Machine).filter(Machine.id == str(machine_id)).first()
    if not machine:
        return {"success": False, "error": "Machine not found"}
    if _machine_on_any_ticket(db, machine.id):
        return {"success": False, "error": "Cannot delete machine with existing tickets"}

    db.delete(machine)
    db.commit()
    logger.info("machine_deleted", machine_id=machine_id, user_id=user.id)
    revalidate_cache([CacheTags.MACHINES])
    return {"success": True}
