from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.machines import MachineCreate, MachineResponse, MachineUpdate
from ..services import machines as machine_service
from .common import raise_for_result


router = APIRouter(prefix="/machines", tags=["machines"])


@router.get("", response_model=List[MachineResponse])
def list_machines(db: Session = Depends(get_db), _=Depends(require_roles(*machine_service.MACHINE_ADMIN_ROLES))):
    return machine_service.get_machines(db)


@router.post("")
def create_machine(payload: MachineCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(machine_service.create_machine(db, user, payload))


@router.patch("/{machine_id}")
def update_machine(
    machine_id: str,
    payload: MachineUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(machine_service.update_machine(db, user, machine_id, payload))


@router.delete("/{machine_id}")
def delete_machine(machine_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(machine_service.delete_machine(db, user, machine_id))
