from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.reports import (
    CustomerMetrics,
    CustomerTimeReport,
    EquipmentMetrics,
    ReportBaseData,
    ReportFilters,
    RevenueMetrics,
    ServiceQualityMetrics,
    TechnicianMetrics,
    TechnicianTimeReport,
    TicketMetrics,
)
from ..services import report_data, reports as report_service
from ..services.permissions import REPORT_ROLES


router = APIRouter(prefix="/reports", tags=["reports"])

report_user = require_roles(*REPORT_ROLES)


def report_filters(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: List[str] = Query(default=[]),
    technician_id: List[str] = Query(default=[]),
    customer_id: List[str] = Query(default=[]),
    part_name: List[str] = Query(default=[]),
    part_category: List[str] = Query(default=[]),
) -> ReportFilters:
    return ReportFilters(
        start_date=start_date,
        end_date=end_date,
        statuses=status,
        technician_ids=technician_id,
        customer_ids=customer_id,
        part_names=part_name,
        part_categories=part_category,
    )


@router.get("/technicians", response_model=List[TechnicianMetrics])
def technician_metrics(db: Session = Depends(get_db), user: User = Depends(report_user)):
    return report_service.get_technician_metrics(db, user)


@router.get("/tickets", response_model=TicketMetrics)
def ticket_metrics(db: Session = Depends(get_db), user: User = Depends(report_user)):
    return report_service.get_ticket_metrics(db, user)


@router.get("/customers", response_model=List[CustomerMetrics])
def customer_metrics(db: Session = Depends(get_db), user: User = Depends(report_user)):
    return report_service.get_customer_metrics(db, user)


@router.get("/equipment", response_model=List[EquipmentMetrics])
def equipment_metrics(db: Session = Depends(get_db), user: User = Depends(report_user)):
    return report_service.get_equipment_metrics(db, user)


@router.get("/revenue", response_model=List[RevenueMetrics])
def revenue_metrics(db: Session = Depends(get_db), user: User = Depends(report_user)):
    return report_service.get_revenue_metrics(db, user)


@router.get("/service-quality", response_model=ServiceQualityMetrics)
def service_quality_metrics(db: Session = Depends(get_db), user: User = Depends(report_user)):
    return report_service.get_service_quality_metrics(db, user)


@router.get("/base-data", response_model=ReportBaseData)
def base_data(db: Session = Depends(get_db), user: User = Depends(report_user)):
    return report_data.get_report_base_data(db, user)


@router.get("/time/technicians", response_model=TechnicianTimeReport)
def time_by_technician(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
    user: User = Depends(report_user),
):
    return report_data.get_time_by_technician(db, user, filters)


@router.get("/time/customers", response_model=CustomerTimeReport)
def time_by_customer(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
    user: User = Depends(report_user),
):
    return report_data.get_time_by_customer(db, user, filters)
