from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..models.models import User
from ..services import imports as import_service
from ..services.permissions import REPORT_ROLES


router = APIRouter(prefix="/imports", tags=["imports"])

importer = require_roles(*REPORT_ROLES)


async def _read_upload(file: UploadFile) -> List[dict]:
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")
    return import_service.read_csv_rows(text)


@router.post("/customers")
def import_customers(
    rows: List[Dict[str, Any]] = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(importer),
):
    return import_service.import_customers(db, user, rows)


@router.post("/customers/csv")
async def import_customers_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(importer),
):
    rows = await _read_upload(file)
    return import_service.import_customers(db, user, rows)


@router.post("/machines")
def import_machines(
    rows: List[Dict[str, Any]] = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(importer),
):
    return import_service.import_machines(db, user, rows)


@router.post("/machines/csv")
async def import_machines_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(importer),
):
    rows = await _read_upload(file)
    return import_service.import_machines(db, user, rows)
