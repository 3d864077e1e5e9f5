"""
Normalized report data and the filterable time roll-ups built on it.
"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..cache import CacheTags, cached_query
from ..models.models import Customer, Machine, MachineWorkLog, Part, Ticket, User
from ..schemas.reports import (
    CustomerHours,
    CustomerTimeReport,
    CustomerTimeRow,
    ReportBaseData,
    ReportCustomer,
    ReportFilters,
    ReportMachine,
    ReportPart,
    ReportTechnician,
    ReportTicket,
    ReportTicketMachine,
    ReportWorkLog,
    TechnicianHours,
    TechnicianTimeReport,
    TechnicianTimeRow,
    TimeLogEntry,
)
from .permissions import REPORT_ROLES, TECHNICIAN, has_role
from .time_rules import ensure_utc, local_date_range_utc


BASE_DATA_TAGS = [
    CacheTags.REPORTS,
    CacheTags.TICKETS,
    CacheTags.WORK_LOGS,
    CacheTags.CUSTOMERS,
    CacheTags.MACHINES,
    CacheTags.TECHNICIANS,
    CacheTags.PARTS,
]


def _report_ticket(ticket: Ticket) -> ReportTicket:
    machines = []
    for m in ticket.machines or []:
        machines.append(ReportTicketMachine(
            machine_id=m.get("machine_id"),
            customer_id=m.get("customer_id"),
            customer_name=m.get("customer_name") or "Unknown",
            machine_type=m.get("machine_type") or "Unknown",
            serial_number=m.get("serial_number") or "Unknown",
            priority=m.get("priority"),
        ))
    return ReportTicket(
        id=ticket.id,
        ticket_number=ticket.ticket_number or "",
        status=ticket.status or "Open",
        created_at=ensure_utc(ticket.created_at),
        closed_at=ensure_utc(ticket.closed_at),
        assigned_to=ticket.assigned_to,
        assigned_to_name=ticket.assigned_to_name,
        issue_description=ticket.issue_description,
        machines=machines,
    )


def _report_work_log(log: MachineWorkLog) -> ReportWorkLog:
    return ReportWorkLog(
        id=log.id,
        ticket_id=log.ticket_id,
        machine_id=log.machine_id,
        recorded_by=log.recorded_by,
        arrival_time=ensure_utc(log.arrival_time),
        departure_time=ensure_utc(log.departure_time),
        hours_worked=log.hours_worked,
        work_performed=log.work_performed,
        outcome=log.outcome,
        repairs=log.repairs,
        parts_used=[p for p in (log.parts_used or []) if p and p.get("part_name")],
    )


@cached_query("report-base-data", tags=BASE_DATA_TAGS)
def _load_report_base_data(db: Session) -> ReportBaseData:
    tickets = db.query(Ticket).all()
    work_logs = db.query(MachineWorkLog).all()
    customers = db.query(Customer).filter(Customer.is_disabled.is_(False)).all()
    machines = db.query(Machine).all()
    technicians = db.query(User).filter(User.role == TECHNICIAN, User.disabled.is_(False)).all()
    parts = db.query(Part).all()

    return ReportBaseData(
        tickets=[_report_ticket(t) for t in tickets],
        work_logs=[_report_work_log(w) for w in work_logs],
        customers=[ReportCustomer(id=c.id, company_name=c.company_name or "Unknown") for c in customers],
        machines=[
            ReportMachine(id=m.id, customer_id=m.customer_id, type=m.type or "Unknown", serial_number=m.serial_number or "Unknown")
            for m in machines
        ],
        technicians=[ReportTechnician(id=u.id, name=u.name or "Unknown") for u in technicians],
        parts=[ReportPart(id=p.id, name=p.name or "Unknown", category=p.category) for p in parts],
    )


def get_report_base_data(db: Session, user: Optional[User]) -> ReportBaseData:
    """Everything the interactive reports filter over; empty for non-report roles."""
    if not has_role(user, REPORT_ROLES):
        return ReportBaseData()
    return _load_report_base_data(db)


class _TimeLogFilter:
    """Applies ``ReportFilters`` to work logs the way both time reports need."""

    def __init__(self, data: ReportBaseData, filters: ReportFilters):
        self.filters = filters
        self.start, self.end = local_date_range_utc(filters.start_date, filters.end_date)
        self.tickets = {t.id: t for t in data.tickets}
        self.machines = {m.id: m for m in data.machines}
        self.customers = {c.id: c for c in data.customers}
        self.technicians = {t.id: t for t in data.technicians}
        self.part_categories = {p.name: p.category or "" for p in data.parts}

    def _matches_date(self, value: Optional[datetime]) -> bool:
        if self.start is None and self.end is None:
            return True
        if value is None:
            return False
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True

    def _matches_parts(self, log: ReportWorkLog) -> bool:
        names, categories = self.filters.part_names, self.filters.part_categories
        if not names and not categories:
            return True
        for part in log.parts_used:
            name_match = not names or part.part_name in names
            category_match = not categories or self.part_categories.get(part.part_name, "") in categories
            if name_match or category_match:
                return True
        return False

    def resolve(self, log: ReportWorkLog, require_technician: bool) -> Optional[Tuple[ReportTicket, str, str, Optional[datetime]]]:
        """
        Return (ticket, customer_id, customer_name, log_date) for a log that
        passes every filter, else None.
        """
        if not log.hours_worked or log.hours_worked <= 0:
            return None
        if require_technician and not log.recorded_by:
            return None
        ticket = self.tickets.get(log.ticket_id)
        if ticket is None:
            return None

        log_date = log.arrival_time or log.departure_time or ticket.created_at
        if not self._matches_date(log_date):
            return None
        f = self.filters
        if f.statuses and ticket.status not in f.statuses:
            return None
        if f.technician_ids and (not log.recorded_by or log.recorded_by not in f.technician_ids):
            return None
        if not self._matches_parts(log):
            return None

        machine = self.machines.get(log.machine_id)
        ticket_machine = next((m for m in ticket.machines if m.machine_id == log.machine_id), None)
        customer_id = (machine.customer_id if machine else None) or (ticket_machine.customer_id if ticket_machine else None)
        if not customer_id:
            return None
        if f.customer_ids and customer_id not in f.customer_ids:
            return None

        customer = self.customers.get(customer_id)
        customer_name = (
            (customer.company_name if customer else None)
            or (ticket_machine.customer_name if ticket_machine else None)
            or "Unknown"
        )
        return ticket, customer_id, customer_name, log_date

    def technician_name(self, technician_id: Optional[str]) -> str:
        tech = self.technicians.get(technician_id) if technician_id else None
        return tech.name if tech else "Unknown"

    def customer_name(self, customer_id: str) -> str:
        customer = self.customers.get(customer_id)
        return customer.company_name if customer else "Unknown"


def _log_entry(log: ReportWorkLog, ticket: ReportTicket, technician_name: str, customer_name: str, log_date) -> TimeLogEntry:
    return TimeLogEntry(
        id=log.id,
        ticket_id=log.ticket_id,
        ticket_number=ticket.ticket_number or "Unknown",
        machine_id=log.machine_id,
        recorded_by=log.recorded_by,
        technician_name=technician_name,
        customer_name=customer_name,
        hours_worked=log.hours_worked,
        log_date=log_date,
        work_performed=log.work_performed,
        outcome=log.outcome,
    )


def _sort_logs(logs: List[TimeLogEntry]) -> List[TimeLogEntry]:
    return sorted(logs, key=lambda entry: entry.log_date.timestamp() if entry.log_date else 0, reverse=True)


def get_time_by_technician(db: Session, user: Optional[User], filters: Optional[ReportFilters] = None) -> TechnicianTimeReport:
    """
    Hours worked per technician, broken down by customer.

    Args:
        db: Database session
        user: Caller; admin or management
        filters: Optional date, status, technician, customer and part filters

    Returns:
        Rows sorted by total hours, largest first, plus the grand total
    """
    data = get_report_base_data(db, user)
    matcher = _TimeLogFilter(data, filters or ReportFilters())

    rows: Dict[str, dict] = {}
    total_hours = 0.0
    for log in data.work_logs:
        resolved = matcher.resolve(log, require_technician=True)
        if resolved is None:
            continue
        ticket, customer_id, customer_name, log_date = resolved
        technician_name = matcher.technician_name(log.recorded_by)

        row = rows.get(log.recorded_by)
        if row is None:
            row = rows[log.recorded_by] = {
                "technician_name": technician_name,
                "total_hours": 0.0,
                "ticket_ids": set(),
                "customer_hours": defaultdict(float),
                "logs": [],
            }
        row["total_hours"] += log.hours_worked
        row["ticket_ids"].add(log.ticket_id)
        row["customer_hours"][customer_id] += log.hours_worked
        row["logs"].append(_log_entry(log, ticket, technician_name, customer_name, log_date))
        total_hours += log.hours_worked

    result = []
    for technician_id, row in rows.items():
        customers = [
            CustomerHours(customer_id=cid, customer_name=matcher.customer_name(cid), hours=hours)
            for cid, hours in row["customer_hours"].items()
        ]
        result.append(TechnicianTimeRow(
            technician_id=technician_id,
            technician_name=row["technician_name"],
            total_hours=row["total_hours"],
            ticket_count=len(row["ticket_ids"]),
            customers=sorted(customers, key=lambda c: c.hours, reverse=True),
            logs=_sort_logs(row["logs"]),
        ))
    result.sort(key=lambda r: r.total_hours, reverse=True)
    return TechnicianTimeReport(rows=result, total_hours=total_hours)


def get_time_by_customer(db: Session, user: Optional[User], filters: Optional[ReportFilters] = None) -> CustomerTimeReport:
    """Hours worked per customer, broken down by technician."""
    data = get_report_base_data(db, user)
    matcher = _TimeLogFilter(data, filters or ReportFilters())

    rows: Dict[str, dict] = {}
    total_hours = 0.0
    for log in data.work_logs:
        resolved = matcher.resolve(log, require_technician=False)
        if resolved is None:
            continue
        ticket, customer_id, customer_name, log_date = resolved

        row = rows.get(customer_id)
        if row is None:
            row = rows[customer_id] = {
                "customer_name": customer_name,
                "total_hours": 0.0,
                "ticket_ids": set(),
                "machine_ids": set(),
                "technician_hours": defaultdict(float),
                "logs": [],
            }
        row["total_hours"] += log.hours_worked
        row["ticket_ids"].add(log.ticket_id)
        row["machine_ids"].add(log.machine_id)
        if log.recorded_by:
            row["technician_hours"][log.recorded_by] += log.hours_worked
        row["logs"].append(_log_entry(log, ticket, matcher.technician_name(log.recorded_by), customer_name, log_date))
        total_hours += log.hours_worked

    result = []
    for customer_id, row in rows.items():
        technicians = [
            TechnicianHours(technician_id=tid, technician_name=matcher.technician_name(tid), hours=hours)
            for tid, hours in row["technician_hours"].items()
        ]
        result.append(CustomerTimeRow(
            customer_id=customer_id,
            customer_name=row["customer_name"],
            total_hours=row["total_hours"],
            ticket_count=len(row["ticket_ids"]),
            machine_count=len(row["machine_ids"]),
            technicians=sorted(technicians, key=lambda t: t.hours, reverse=True),
            logs=_sort_logs(row["logs"]),
        ))
    result.sort(key=lambda r: r.total_hours, reverse=True)
    return CustomerTimeReport(rows=result, total_hours=total_hours)
