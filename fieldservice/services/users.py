"""
User account management for admins and call admins.
"""
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash
from ..cache import CacheTags, revalidate_cache
from ..models.models import User
from ..schemas.users import PasswordReset, UserCreate, UserUpdate
from .permissions import ADMIN, USER_ADMIN_ROLES, has_role
from .time_rules import ensure_utc, utc_now
from .validation import coerce, first_error_message


logger = structlog.get_logger(__name__)

# Role and account changes reshape the technician pickers and every report
USER_TAGS = [CacheTags.TECHNICIANS, CacheTags.REPORTS]


def _user_tags(user_id: str) -> list:
    # Call admin views are keyed per user as well
    return USER_TAGS + [CacheTags.CALL_ADMINS, CacheTags.call_admin(str(user_id))]


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "disabled": bool(user.disabled),
        "internal_pay_rate": user.internal_pay_rate,
        "chargeout_rate": user.chargeout_rate,
        "created_at": ensure_utc(user.created_at),
        "last_login_at": ensure_utc(user.last_login_at),
    }


def _email_taken(db: Session, email: str, exclude_id: Optional[str] = None) -> bool:
    query = db.query(User).filter(User.email == email.lower())
    if exclude_id:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def list_users(db: Session, user: Optional[User]) -> dict:
    if not has_role(user, USER_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized", "users": []}
    rows = db.query(User).order_by(User.name.asc()).all()
    return {"success": True, "users": [user_to_dict(u) for u in rows]}


def create_user(db: Session, user: Optional[User], data: Any) -> dict:
    if not has_role(user, USER_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    try:
        payload = coerce(UserCreate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}
    if _email_taken(db, payload.email):
        return {"success": False, "error": "A user with this email already exists"}

    try:
        now = utc_now()
        new_user = User(
            email=payload.email.lower(),
            name=payload.name,
            role=payload.role.value,
            password_hash=get_password_hash(payload.password),
            disabled=False,
            internal_pay_rate=payload.internal_pay_rate,
            chargeout_rate=payload.chargeout_rate,
            created_at=now,
            updated_at=now,
        )
        db.add(new_user)
        db.commit()
        db.refresh(new_user)
    except Exception as e:
        db.rollback()
        logger.exception("user_create_failed")
        return {"success": False, "error": str(e) or "Failed to create user"}

    logger.info("user_created", user_id=new_user.id, role=new_user.role, created_by=user.id)
    revalidate_cache(USER_TAGS)
    return {"success": True, "user_id": new_user.id}


def update_user(db: Session, user: Optional[User], user_id: str, data: Any) -> dict:
    if not has_role(user, USER_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    target = db.query(User).filter(User.id == str(user_id)).first()
    if not target:
        return {"success": False, "error": "User not found"}
    try:
        payload = coerce(UserUpdate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("email") and _email_taken(db, changes["email"], exclude_id=target.id):
        return {"success": False, "error": "A user with this email already exists"}
    if (
        payload.role is not None
        and target.role == ADMIN
        and payload.role.value != ADMIN
        and db.query(User).filter(User.role == ADMIN).count() <= 1
    ):
        return {"success": False, "error": "At least one admin must remain in the system"}

    try:
        if changes.get("name"):
            target.name = changes["name"]
        if changes.get("email"):
            target.email = changes["email"].lower()
        if payload.role is not None:
            target.role = payload.role.value
        if "internal_pay_rate" in changes:
            target.internal_pay_rate = changes["internal_pay_rate"]
        if "chargeout_rate" in changes:
            target.chargeout_rate = changes["chargeout_rate"]
        target.updated_at = utc_now()
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("user_update_failed", user_id=user_id)
        return {"success": False, "error": str(e) or "Failed to update user"}

    revalidate_cache(_user_tags(target.id))
    return {"success": True}


def set_user_disabled(db: Session, user: Optional[User], user_id: str, disabled: bool) -> dict:
    if not has_role(user, USER_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    target = db.query(User).filter(User.id == str(user_id)).first()
    if not target:
        return {"success": False, "error": "User not found"}

    target.disabled = bool(disabled)
    target.updated_at = utc_now()
    db.commit()
    logger.info("user_disabled_set", user_id=target.id, disabled=target.disabled, changed_by=user.id)
    revalidate_cache(_user_tags(target.id))
    return {"success": True}


def update_user_password(db: Session, user: Optional[User], user_id: str, password: str) -> dict:
    if not has_role(user, USER_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    try:
        payload = coerce(PasswordReset, {"password": password})
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}
    target = db.query(User).filter(User.id == str(user_id)).first()
    if not target:
        return {"success": False, "error": "User not found"}

    target.password_hash = get_password_hash(payload.password)
    target.updated_at = utc_now()
    db.commit()
    logger.info("user_password_reset", user_id=target.id, changed_by=user.id)
    return {"success": True}


def delete_user(db: Session, user: Optional[User], user_id: str) -> dict:
    if not has_role(user, USER_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    target = db.query(User).filter(User.id == str(user_id)).first()
    if not target:
        return {"success": False, "error": "User not found"}
    if target.role == ADMIN and db.query(User).filter(User.role == ADMIN).count() <= 1:
        return {"success": False, "error": "At least one admin must remain in the system"}

    db.delete(target)
    db.commit()
    logger.info("user_deleted", user_id=user_id, deleted_by=user.id)
    revalidate_cache(_user_tags(user_id))
    return {"success": True}
