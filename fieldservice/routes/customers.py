from typing import List

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.customers import CustomerCreate, CustomerResponse, CustomerUpdate
from ..services import customers as customer_service
from ..services.permissions import TICKET_ADMIN_ROLES
from .common import raise_for_result


router = APIRouter(prefix="/customers", tags=["customers"])


@router.get("", response_model=List[CustomerResponse])
def list_customers(
    include_disabled: bool = True,
    db: Session = Depends(get_db),
    _=Depends(require_roles(*TICKET_ADMIN_ROLES)),
):
    if include_disabled:
        return customer_service.get_customers(db)
    return customer_service.get_enabled_customers(db)


@router.post("")
def create_customer(payload: CustomerCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(customer_service.create_customer(db, user, payload))


@router.patch("/{customer_id}")
def update_customer(
    customer_id: str,
    payload: CustomerUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(customer_service.update_customer(db, user, customer_id, payload))


@router.put("/{customer_id}/disabled")
def set_customer_disabled(
    customer_id: str,
    is_disabled: bool = Body(..., embed=True),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(customer_service.toggle_customer_disabled(db, user, customer_id, is_disabled))


@router.delete("/{customer_id}")
def delete_customer(customer_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(customer_service.delete_customer(db, user, customer_id))
