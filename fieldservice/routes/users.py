from typing import List

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..schemas.users import PasswordReset, UserCreate, UserResponse, UserUpdate
from ..services import users as user_service
from .common import raise_for_result


router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[UserResponse])
def list_users(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(user_service.list_users(db, user))["users"]


@router.post("")
def create_user(payload: UserCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(user_service.create_user(db, user, payload))


@router.patch("/{user_id}")
def update_user(
    user_id: str,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(user_service.update_user(db, user, user_id, payload))


@router.put("/{user_id}/disabled")
def set_user_disabled(
    user_id: str,
    disabled: bool = Body(..., embed=True),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(user_service.set_user_disabled(db, user, user_id, disabled))


@router.put("/{user_id}/password")
def reset_password(
    user_id: str,
    payload: PasswordReset,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(user_service.update_user_password(db, user, user_id, payload.password))


@router.delete("/{user_id}")
def delete_user(user_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(user_service.delete_user(db, user, user_id))
