from typing import List, Literal

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.parts import PartCreate, PartResponse, PartUpdate
from ..services import parts as part_service
from .common import raise_for_result


router = APIRouter(prefix="/parts", tags=["parts"])


@router.get("", response_model=List[PartResponse])
def list_parts(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(part_service.get_parts_for_selection(db, user))["parts"]


@router.get("/low-stock", response_model=List[PartResponse])
def low_stock_parts(db: Session = Depends(get_db), _=Depends(require_roles(*part_service.PART_ADMIN_ROLES))):
    return part_service.get_low_stock_parts(db)


@router.post("")
def create_part(payload: PartCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(part_service.create_part(db, user, payload))


@router.patch("/{part_id}")
def update_part(
    part_id: str,
    payload: PartUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(part_service.update_part(db, user, part_id, payload))


@router.post("/{part_id}/quantity")
def adjust_part_quantity(
    part_id: str,
    quantity: int = Body(..., ge=1),
    operation: Literal["use", "add"] = Body("use"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(part_service.update_part_quantity(db, user, part_id, quantity, operation))


@router.delete("/{part_id}")
def delete_part(part_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(part_service.delete_part(db, user, part_id))
