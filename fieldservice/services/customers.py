from typing import Any, List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..cache import CacheTags, cached_query, revalidate_cache
from ..models.models import Customer, Machine, User
from ..schemas.customers import CustomerCreate, CustomerUpdate
from .permissions import TICKET_ADMIN_ROLES, has_role
from .time_rules import ensure_utc, utc_now
from .validation import coerce, first_error_message


logger = structlog.get_logger(__name__)


def customer_to_dict(customer: Customer) -> dict:
    return {
        "id": customer.id,
        "company_name": customer.company_name,
        "contact_person": customer.contact_person,
        "phone": customer.phone,
        "email": customer.email,
        "address": customer.address,
        "is_disabled": bool(customer.is_disabled),
        "created_at": ensure_utc(customer.created_at),
        "updated_at": ensure_utc(customer.updated_at),
    }


@cached_query("customers", tags=[CacheTags.CUSTOMERS])
def get_customers(db: Session) -> List[dict]:
    rows = db.query(Customer).order_by(Customer.company_name.asc()).all()
    return [customer_to_dict(c) for c in rows]


def get_enabled_customers(db: Session) -> List[dict]:
    """Customers offered in ticket and machine forms."""
    return [c for c in get_customers(db) if not c["is_disabled"]]


def create_customer(db: Session, user: Optional[User], data: Any) -> dict:
    if not has_role(user, TICKET_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    try:
        payload = coerce(CustomerCreate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    try:
        now = utc_now()
        customer = Customer(**payload.model_dump(), is_disabled=False, created_at=now, updated_at=now)
        db.add(customer)
        db.commit()
        db.refresh(customer)
    except Exception as e:
        db.rollback()
        logger.exception("customer_create_failed")
        return {"success": False, "error": str(e) or "Failed to create customer"}

    logger.info("customer_created", customer_id=customer.id, user_id=user.id)
    revalidate_cache([CacheTags.CUSTOMERS])
    return {"success": True, "customer_id": customer.id}


def update_customer(db: Session, user: Optional[User], customer_id: str, data: Any) -> dict:
    if not has_role(user, TICKET_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    customer = db.query(Customer).filter(Customer.id == str(customer_id)).first()
    if not customer:
        return {"success": False, "error": "Customer not found"}
    try:
        payload = coerce(CustomerUpdate, data)
    except ValidationError as e:
        return {"success": False, "error": first_error_message(e)}

    try:
        for field, value in payload.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(customer, field, value)
        customer.updated_at = utc_now()
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("customer_update_failed", customer_id=customer_id)
        return {"success": False, "error": str(e) or "Failed to update customer"}

    revalidate_cache([CacheTags.CUSTOMERS])
    return {"success": True}


def toggle_customer_disabled(db: Session, user: Optional[User], customer_id: str, is_disabled: bool) -> dict:
    if not has_role(user, TICKET_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    customer = db.query(Customer).filter(Customer.id == str(customer_id)).first()
    if not customer:
        return {"success": False, "error": "Customer not found"}

    customer.is_disabled = bool(is_disabled)
    customer.updated_at = utc_now()
    db.commit()
    logger.info("customer_disabled_toggled", customer_id=customer.id, is_disabled=customer.is_disabled)
    revalidate_cache([CacheTags.CUSTOMERS])
    return {"success": True}


def delete_customer(db: Session, user: Optional[User], customer_id: str) -> dict:
    if not has_role(user, TICKET_ADMIN_ROLES):
        return {"success": False, "error": "Unauthorized"}
    customer = db.query(Customer).filter(Customer.id == str(customer_id)).first()
    if not customer:
        return {"success": False, "error": "Customer not found"}
    if db.query(Machine).filter(Machine.customer_id == customer.id).first() is not None:
        return {"success": False, "error": "Cannot delete customer with existing machines"}

    db.delete(customer)
    db.commit()
    logger.info("customer_deleted", customer_id=customer_id, user_id=user.id)
    revalidate_cache([CacheTags.CUSTOMERS])
    return {"success": True}
