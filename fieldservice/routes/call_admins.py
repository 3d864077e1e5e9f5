from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User
from ..services import call_admins as call_admin_service
from ..services.aggregates import recalculate_call_admin_aggregates
from ..services.permissions import ADMIN
from .common import raise_for_result


router = APIRouter(prefix="/call-admins", tags=["call-admins"])


@router.get("")
def list_call_admins(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(call_admin_service.list_call_admins(db, user))["call_admins"]


@router.get("/{call_admin_id}/stats")
def call_admin_stats(call_admin_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(call_admin_service.get_call_admin_stats(db, user, call_admin_id))["stats"]


@router.get("/{call_admin_id}/tickets")
def call_admin_tickets(call_admin_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(call_admin_service.get_call_admin_tickets(db, user, call_admin_id))["tickets"]


@router.post("/{call_admin_id}/recalculate")
def recalculate_stats(call_admin_id: str, db: Session = Depends(get_db), _=Depends(require_roles(ADMIN))):
    return raise_for_result(recalculate_call_admin_aggregates(db, call_admin_id))
