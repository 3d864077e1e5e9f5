from typing import Any, List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..cache import CacheTags, cached_query, revalidate_cache
from ..models.models import MachineWorkLog, Part, User
from ..schemas.parts import PartCreate, PartUpdate
from .permissions import REPORT_ROLES, has_role
from .time_rules import ensure_utc, utc_now
from .validation import coerce, first_error_message


logger = structlog.get_logger(__name__)

PART_ADMIN_ROLES = REPORT_ROLES


def part_to_dict(part: Part) -> dict:
    return {
        "id": part.id,
        "name": part.name,
        "description": part.description,
        "category": part.category,
        "quantity_in_stock": part.quantity_in_stock or 0,
        "min_quantity": part.min_quantity or 0,
        "created_at": ensure_utc(part.created_at),
        "updated_at": ensure_utc(part.updated_at),
    }


@cached_query("parts", tags=[CacheTags.PARTS])
def get_parts(db: Session) -> List[dict]:
    return [part_to_dict(p) for p in db.query(Part).order_by(Part.name.asc()).all()]


def get_low_stock_parts(db: Session) -> List[dict]:
    return [p for p in get_parts(db) if p["quantity_in_stock"] <= p["min_quantity"]]


def get_parts_for_selection(db: Session, user: Optional[User]) -> dict:
    """Parts list for the work log form; any signed-in user."""
    if user is None:
        return {"success": False, "error": "Unauthorized"}
    return {"success": True, "parts": get_parts(db)}


def create_part(db: Session, user: Optional[User], data: Any) -> dict:
    if not has_role(user, PART_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    try:
        payload = coerce(PartCreate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    try:
        now = utc_now()
        part = Part(**payload.model_dump(), created_at=now, updated_at=now)
        db.add(part)
        db.commit()
        db.refresh(part)
    except Exception as e:
        db.rollback()
        logger.exception("part_create_failed")
        return {"success": False, "error": str(e) or "Failed to create part"}

    logger.info("part_created", part_id=part.id, name=part.name)
    revalidate_cache([CacheTags.PARTS, CacheTags.REPORTS])
    return {"success": True, "part_id": part.id}


def update_part(db: Session, user: Optional[User], part_id: str, data: Any) -> dict:
    if not has_role(user, PART_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    part = db.query(Part).filter(Part.id == str(part_id)).first()
    if not part:
        return {"success": False, "error": "Part not found"}
    try:
        payload = coerce(PartUpdate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    try:
        changes = payload.model_dump(exclude_unset=True)
        for field, value in changes.items():
            if value is not None or field == "category":
                setattr(part, field, value)
        part.updated_at = utc_now()
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("part_update_failed", part_id=part_id)
        return {"success": False, "error": str(e) or "Failed to update part"}

    revalidate_cache([CacheTags.PARTS, CacheTags.REPORTS])
    return {"success": True}


def _part_in_work_logs(db: Session, part_id: str) -> bool:
    for (parts_used,) in db.query(MachineWorkLog.parts_used).yield_per(500):
        if any((p or {}).get("part_id") == part_id for p in parts_used or []):
            return True
    return False


def delete_part(db: Session, user: Optional[User], part_id: str) -> dict:
    if not has_role(user, PART_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    part = db.query(Part).filter(Part.id == str(part_id)).first()
    if not part:
        return {"success": False, "error": "Part not found"}
    if _part_in_work_logs(db, part.id):
        return {
            "success": False,
            "error": "Cannot delete part that has been used in work logs. Archive or rename the part instead.",
        }

    db.delete(part)
    db.commit()
    logger.info("part_deleted", part_id=part_id)
    revalidate_cache([CacheTags.PARTS, CacheTags.REPORTS])
    return {"success": True}


def update_part_quantity(db: Session, user: Optional[User], part_id: str, quantity: int, operation: str = "use") -> dict:
    """
    Adjust stock by ``quantity``: ``use`` takes stock out, ``add`` puts it back.

    Stock never goes negative.
    """
    if user is None:
        return {"success": False, "error": "Unauthorized"}
    if operation not in ("use", "add"):
        return {"success": False, "error": "Unknown operation"}
    part = db.query(Part).filter(Part.id == str(part_id)).with_for_update().first()
    if not part:
        return {"success": False, "error": "Part not found"}

    current = part.quantity_in_stock or 0
    new_quantity = current - quantity if operation == "use" else current + quantity
    if new_quantity < 0:
        return {
            "success": False,
            "error": f"Insufficient stock. Available: {current}, Requested: {quantity}",
        }

    part.quantity_in_stock = new_quantity
    part.updated_at = utc_now()
    db.commit()
    logger.info("part_quantity_updated", part_id=part.id, operation=operation, quantity=quantity, new_quantity=new_quantity)
    revalidate_cache([CacheTags.PARTS, CacheTags.REPORTS])
    return {"success": True, "new_quantity": new_quantity}
