from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.tickets import (
    BulkWorkLog,
    CustomerOption,
    MachineOption,
    TechnicianOption,
    TechnicianUpdate,
    TicketCreate,
    TicketCreatedResponse,
    TicketResponse,
    TicketStatus,
    TicketUpdate,
    WorkLogResponse,
)
from ..services import tickets as ticket_service
from ..services import work_logs as work_log_service
from ..services.permissions import TICKET_ADMIN_ROLES
from .common import raise_for_result


router = APIRouter(prefix="/tickets", tags=["tickets"])


# ---------- Form lookups ----------

@router.get("/options/customers", response_model=List[CustomerOption])
def customer_options(db: Session = Depends(get_db), _=Depends(require_roles(*TICKET_ADMIN_ROLES))):
    return ticket_service.get_customers_for_tickets(db)


@router.get("/options/customers/{customer_id}/machines", response_model=List[MachineOption])
def machine_options(customer_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ticket_service.get_machines_for_customer(db, user, customer_id)


@router.get("/options/technicians", response_model=List[TechnicianOption])
def technician_options(db: Session = Depends(get_db), _=Depends(require_roles(*TICKET_ADMIN_ROLES))):
    return ticket_service.get_technicians_for_assignment(db)


# ---------- Tickets ----------

@router.get("", response_model=List[TicketResponse])
def list_tickets(
    status: Optional[TicketStatus] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return ticket_service.list_tickets(db, user, status.value if status else None)


@router.post("", response_model=TicketCreatedResponse)
def create_ticket(payload: TicketCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(ticket_service.create_ticket(db, user, payload))


@router.get("/{ticket_id}", response_model=TicketResponse)
def get_ticket(ticket_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(ticket_service.get_ticket(db, user, ticket_id))["ticket"]


@router.patch("/{ticket_id}")
def update_ticket(
    ticket_id: str,
    payload: TicketUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(ticket_service.update_ticket(db, user, ticket_id, payload))


@router.post("/{ticket_id}/close")
def close_ticket(ticket_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(ticket_service.close_ticket(db, user, ticket_id))


@router.put("/{ticket_id}/visit")
def record_visit(
    ticket_id: str,
    payload: TechnicianUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(ticket_service.technician_update_ticket(db, user, ticket_id, payload))


# ---------- Work logs ----------

@router.get("/{ticket_id}/work-logs", response_model=List[WorkLogResponse])
def list_work_logs(ticket_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return raise_for_result(work_log_service.get_work_logs_for_ticket(db, user, ticket_id))["work_logs"]


@router.post("/{ticket_id}/work-logs/bulk")
def add_bulk_work_logs(
    ticket_id: str,
    payload: BulkWorkLog,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(work_log_service.add_bulk_work_log_entries(db, user, ticket_id, payload))


@router.put("/{ticket_id}/work-logs/{machine_id}")
def save_work_log(
    ticket_id: str,
    machine_id: str,
    payload: TechnicianUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return raise_for_result(work_log_service.add_work_log_entry(db, user, ticket_id, machine_id, payload))
