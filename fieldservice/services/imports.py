"""
Bulk import of customers and machines from spreadsheet rows.

Rows are plain dicts keyed by the CSV header (``companyName``, ``contactPerson``,
``phone``, ``email``, ``address`` for customers; ``serialNumber``, ``type``,
``companyName``, ``location``, ``notes``, ``installationDate`` for machines).
Row numbers in the report count the header as row 1.
"""
import csv
import io
import re
from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..cache import CacheTags, revalidate_cache
from ..models.models import Customer, Machine, User
from ..schemas.tickets import MachineType
from .permissions import REPORT_ROLES, has_role
from .time_rules import parse_iso, utc_now


logger = structlog.get_logger(__name__)

PHONE_RE = re.compile(r"^\+?[\d\s\-()]{10,}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MACHINE_TYPES = [t.value for t in MachineType]


def read_csv_rows(text: str) -> List[dict]:
    """Parse CSV text into row dicts keyed by the header line."""
    return list(csv.DictReader(io.StringIO(text.lstrip("\ufeff"))))


def _text(row: dict, key: str) -> str:
    value = row.get(key)
    return str(value).strip() if value is not None else ""


def _unauthorized() -> dict:
    return {
        "success": False,
        "imported": 0,
        "skipped": 0,
        "errors": [{"row": 0, "reason": "Unauthorized"}],
    }


def _result(imported: int, skipped: int, errors: List[dict], duplicates: List[str]) -> dict:
    result = {
        "success": not errors,
        "imported": imported,
        "skipped": skipped,
        "errors": errors,
    }
    if duplicates:
        result["duplicates"] = duplicates
    return result


def validate_customer_row(row: dict) -> List[str]:
    errors = []
    if not _text(row, "companyName"):
        errors.append("companyName is required")
    if not _text(row, "contactPerson"):
        errors.append("contactPerson is required")
    if not PHONE_RE.match(_text(row, "phone")):
        errors.append("phone must be a valid phone number")
    if not EMAIL_RE.match(_text(row, "email")):
        errors.append("email must be a valid email address")
    if not _text(row, "address"):
        errors.append("address is required")
    return errors


def validate_machine_row(row: dict) -> List[str]:
    errors = []
    if not _text(row, "serialNumber"):
        errors.append("serialNumber is required")
    if _text(row, "type") not in MACHINE_TYPES:
        errors.append(f"type must be one of: {', '.join(MACHINE_TYPES)}")
    if not _text(row, "companyName"):
        errors.append("companyName is required for linking to customer")
    return errors


def import_customers(db: Session, user: Optional[User], rows: Iterable[dict]) -> dict:
    """
    Create a customer per valid row.

    A row whose email (case-insensitive) already belongs to a customer, or to
    an earlier row of the same file, is skipped and reported.
    """
    if not has_role(user, REPORT_ROLES):
        return _unauthorized()

    seen = {
        (email or "").lower()
        for (email,) in db.query(Customer.email).filter(Customer.email.isnot(None))
    }
    imported = skipped = 0
    errors: List[dict] = []
    duplicates: List[str] = []

    for i, row in enumerate(rows):
        row_number = i + 2
        problems = validate_customer_row(row)
        if problems:
            errors.append({"row": row_number, "reason": "; ".join(problems)})
            continue

        email = _text(row, "email").lower()
        if email in seen:
            errors.append({"row": row_number, "reason": f"Customer with email {email} already exists (skipped)"})
            duplicates.append(email)
            skipped += 1
            continue

        try:
            now = utc_now()
            db.add(Customer(
                company_name=_text(row, "companyName"),
                contact_person=_text(row, "contactPerson"),
                phone=_text(row, "phone"),
                email=email,
                address=_text(row, "address"),
                is_disabled=False,
                created_at=now,
                updated_at=now,
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception("customer_import_row_failed", row=row_number)
            errors.append({"row": row_number, "reason": str(e) or "Failed to import customer"})
            continue

        seen.add(email)
        imported += 1

    logger.info("customers_imported", imported=imported, skipped=skipped, errors=len(errors), user_id=user.id)
    if imported:
        revalidate_cache([CacheTags.CUSTOMERS, CacheTags.REPORTS])
    return _result(imported, skipped, errors, duplicates)


def import_machines(db: Session, user: Optional[User], rows: Iterable[dict]) -> dict:
    """
    Create a machine per valid row, linked to the customer whose company name
    matches ``companyName`` (case-insensitive).
    """
    if not has_role(user, REPORT_ROLES):
        return _unauthorized()

    customers: Dict[str, str] = {}
    for customer_id, company_name in db.query(Customer.id, Customer.company_name):
        customers.setdefault((company_name or "").strip().lower(), customer_id)
    seen = {(serial or "").lower() for (serial,) in db.query(Machine.serial_number)}
    imported = skipped = 0
    errors: List[dict] = []
    duplicates: List[str] = []

    for i, row in enumerate(rows):
        row_number = i + 2
        problems = validate_machine_row(row)
        if problems:
            errors.append({"row": row_number, "reason": "; ".join(problems)})
            continue

        serial_number = _text(row, "serialNumber")
        if serial_number.lower() in seen:
            errors.append({
                "row": row_number,
                "reason": f"Machine with serial number {serial_number} already exists (skipped)",
            })
            duplicates.append(serial_number)
            skipped += 1
            continue

        company_name = _text(row, "companyName")
        customer_id = customers.get(company_name.lower())
        if customer_id is None:
            errors.append({
                "row": row_number,
                "reason": f'Customer "{company_name}" not found. Create customer first.',
            })
            continue

        try:
            now = utc_now()
            db.add(Machine(
                customer_id=customer_id,
                type=_text(row, "type"),
                serial_number=serial_number,
                location=_text(row, "location") or None,
                notes=_text(row, "notes") or None,
                installation_date=parse_iso(_text(row, "installationDate")),
                created_at=now,
                updated_at=now,
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.exception("machine_import_row_failed", row=row_number)
            errors.append({"row": row_number, "reason": str(e) or "Failed to import machine"})
            continue

        seen.add(serial_number.lower())
        imported += 1

    logger.info("machines_imported", imported=imported, skipped=skipped, errors=len(errors), user_id=user.id)
    if imported:
        revalidate_cache([CacheTags.MACHINES, CacheTags.REPORTS])
    return _result(imported, skipped, errors, duplicates)
