"""
Management reports.

Each report checks the caller's role first and returns an empty result for
anyone outside admin/management. The computations are cached by tag and fold
whole collections in memory.
"""
import math
from collections import defaultdict
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..cache import CacheTags, cached_query
from ..config import settings
from ..models.models import Customer, Machine, MachineWorkLog, Ticket, User
from ..schemas.reports import (
    AgingTicket,
    CustomerMetrics,
    EquipmentMetrics,
    IssueCount,
    MachineRepeatIssue,
    PartQuantity,
    RevenueMetrics,
    ServiceQualityMetrics,
    TechnicianMetrics,
    TicketMetrics,
)
from .permissions import REPORT_ROLES, TECHNICIAN, has_role
from .time_rules import ensure_utc, hours_between, utc_now


logger = structlog.get_logger(__name__)

ISSUE_KEY_LENGTH = 50


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _round1(value: float) -> float:
    return _round_half_up(value * 10) / 10


def _resolution_hours(ticket: Ticket) -> Optional[float]:
    if ticket.status != "Closed":
        return None
    return hours_between(ticket.created_at, ticket.closed_at)


def _issue_key(ticket: Ticket) -> str:
    return (ticket.issue_description or "")[:ISSUE_KEY_LENGTH] or "Unknown"


def _first_machine(ticket: Ticket) -> dict:
    machines = ticket.machines or []
    return machines[0] if machines else {}


class _Mean:
    __slots__ = ("total", "count")

    def __init__(self):
        self.total = 0.0
        self.count = 0

    def add(self, value: float) -> None:
        self.total += value
        self.count += 1

    def rounded(self) -> float:
        return _round1(self.total / self.count) if self.count else 0


# ---------- Technician performance ----------

@cached_query("technician-metrics", tags=[CacheTags.REPORTS, CacheTags.TICKETS, CacheTags.TECHNICIANS])
def _compute_technician_metrics(db: Session) -> List[TechnicianMetrics]:
    technicians = db.query(User).filter(User.role == TECHNICIAN).all()
    metrics = {t.id: TechnicianMetrics(uid=t.id, name=t.name) for t in technicians}
    resolution: Dict[str, _Mean] = defaultdict(_Mean)

    for ticket in db.query(Ticket).filter(Ticket.assigned_to.isnot(None)).all():
        tech = metrics.get(ticket.assigned_to)
        if tech is None:
            continue
        tech.total_assigned += 1
        if ticket.status == "Closed":
            tech.total_closed += 1
            hours = _resolution_hours(ticket)
            if hours is not None:
                resolution[tech.uid].add(hours)
        else:
            tech.open_count += 1
        created = ensure_utc(ticket.created_at)
        if created and (tech.last_ticket_date is None or created > tech.last_ticket_date):
            tech.last_ticket_date = created

    for tech in metrics.values():
        tech.avg_resolution_hours = resolution[tech.uid].rounded()
    return sorted(metrics.values(), key=lambda t: t.total_closed, reverse=True)


def get_technician_metrics(db: Session, user: Optional[User]) -> List[TechnicianMetrics]:
    if not has_role(user, REPORT_ROLES):
        return []
    return _compute_technician_metrics(db)


# ---------- Ticket analytics ----------

@cached_query("ticket-metrics", tags=[CacheTags.REPORTS, CacheTags.TICKETS])
def _compute_ticket_metrics(db: Session) -> TicketMetrics:
    tickets = db.query(Ticket).all()
    metrics = TicketMetrics(total_tickets=len(tickets))
    resolution, response = _Mean(), _Mean()
    now = utc_now()
    aging: List[AgingTicket] = []

    for ticket in tickets:
        if ticket.status == "Open":
            metrics.open_tickets += 1
        elif ticket.status == "Assigned":
            metrics.assigned_tickets += 1
        elif ticket.status == "Closed":
            metrics.closed_tickets += 1

        priority = _first_machine(ticket).get("priority")
        if priority in metrics.priority_breakdown:
            metrics.priority_breakdown[priority] += 1

        hours = _resolution_hours(ticket)
        if hours is not None:
            resolution.add(hours)

        # Time to assignment, approximated by the last update
        if ticket.status in ("Assigned", "Closed") and ticket.assigned_to and ticket.created_at:
            response.add(abs(hours_between(ticket.created_at, ticket.updated_at or ticket.created_at)))

        if ticket.status != "Closed" and ticket.created_at:
            days_open = int((now - ensure_utc(ticket.created_at)).total_seconds() // 86400)
            if days_open > settings.aging_ticket_days:
                aging.append(AgingTicket(
                    ticket_number=ticket.ticket_number,
                    days_open=days_open,
                    priority=priority or "Unknown",
                ))

    metrics.avg_resolution_hours = resolution.rounded()
    metrics.avg_response_time_hours = response.rounded()
    metrics.aging_tickets = sorted(aging, key=lambda a: a.days_open, reverse=True)[: settings.aging_ticket_limit]
    return metrics


def get_ticket_metrics(db: Session, user: Optional[User]) -> TicketMetrics:
    if not has_role(user, REPORT_ROLES):
        logger.info("report_access_denied", report="ticket_metrics", role=getattr(user, "role", None))
        return TicketMetrics()
    return _compute_ticket_metrics(db)


# ---------- Customer analysis ----------

@cached_query("customer-metrics", tags=[CacheTags.REPORTS, CacheTags.CUSTOMERS, CacheTags.TICKETS, CacheTags.MACHINES])
def _compute_customer_metrics(db: Session) -> List[CustomerMetrics]:
    customers = db.query(Customer).filter(Customer.is_disabled.is_(False)).all()
    metrics = {c.id: CustomerMetrics(customer_id=c.id, company_name=c.company_name) for c in customers}

    for machine in db.query(Machine).all():
        if machine.customer_id in metrics:
            metrics[machine.customer_id].total_machines += 1

    resolution: Dict[str, _Mean] = defaultdict(_Mean)
    issue_tickets: Dict[tuple, set] = defaultdict(set)

    for ticket in db.query(Ticket).all():
        customer_id = _first_machine(ticket).get("customer_id")
        metric = metrics.get(customer_id)
        if metric is None:
            continue
        metric.total_tickets += 1

        hours = _resolution_hours(ticket)
        if hours is not None:
            resolution[customer_id].add(hours)

        issue_tickets[(customer_id, (ticket.issue_description or "")[:ISSUE_KEY_LENGTH])].add(ticket.id)

        created = ensure_utc(ticket.created_at)
        if created and (metric.last_service_date is None or created > metric.last_service_date):
            metric.last_service_date = created

    repeats: Dict[str, int] = defaultdict(int)
    for (customer_id, _issue), ticket_ids in issue_tickets.items():
        if len(ticket_ids) > 1:
            repeats[customer_id] += len(ticket_ids) - 1

    for metric in metrics.values():
        metric.avg_resolution_hours = resolution[metric.customer_id].rounded()
        metric.repeat_issue_count = repeats[metric.customer_id]
    return sorted(metrics.values(), key=lambda m: m.total_tickets, reverse=True)


def get_customer_metrics(db: Session, user: Optional[User]) -> List[CustomerMetrics]:
    if not has_role(user, REPORT_ROLES):
        return []
    return _compute_customer_metrics(db)


# ---------- Equipment analysis ----------

@cached_query("equipment-metrics", tags=[CacheTags.REPORTS, CacheTags.MACHINES, CacheTags.TICKETS, CacheTags.WORK_LOGS])
def _compute_equipment_metrics(db: Session) -> List[EquipmentMetrics]:
    customer_names = {c.id: c.company_name for c in db.query(Customer).all()}
    metrics = {
        m.id: EquipmentMetrics(
            machine_id=m.id,
            type=m.type,
            serial_number=m.serial_number,
            customer_name=customer_names.get(m.customer_id) or "Unknown",
        )
        for m in db.query(Machine).all()
    }

    for ticket in db.query(Ticket).all():
        created = ensure_utc(ticket.created_at)
        for machine in ticket.machines or []:
            metric = metrics.get(machine.get("machine_id"))
            if metric is None:
                continue
            metric.total_incidents += 1
            if created and (metric.last_service_date is None or created > metric.last_service_date):
                metric.last_service_date = created

    parts_by_machine: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for log in db.query(MachineWorkLog).all():
        for part in log.parts_used or []:
            if part and part.get("part_name"):
                parts_by_machine[log.machine_id][part["part_name"]] += part.get("quantity") or 1

    for machine_id, parts in parts_by_machine.items():
        metric = metrics.get(machine_id)
        if metric is None:
            continue
        metric.parts_used_count = len(parts)
        metric.parts_used = sorted(
            (PartQuantity(part_name=name, quantity=qty) for name, qty in parts.items()),
            key=lambda p: p.quantity,
            reverse=True,
        )

    used = [m for m in metrics.values() if m.total_incidents > 0]
    return sorted(used, key=lambda m: m.total_incidents, reverse=True)


def get_equipment_metrics(db: Session, user: Optional[User]) -> List[EquipmentMetrics]:
    if not has_role(user, REPORT_ROLES):
        return []
    return _compute_equipment_metrics(db)


# ---------- Revenue ----------

@cached_query("revenue-metrics", tags=[CacheTags.REPORTS, CacheTags.WORK_LOGS, CacheTags.TECHNICIANS])
def _compute_revenue_metrics(db: Session) -> List[RevenueMetrics]:
    technicians = {t.id: t for t in db.query(User).filter(User.role == TECHNICIAN).all()}
    metrics = {
        tid: RevenueMetrics(technician_id=tid, technician_name=t.name)
        for tid, t in technicians.items()
    }
    counted = set()

    for log in db.query(MachineWorkLog).all():
        if not log.recorded_by or not log.hours_worked:
            continue
        metric = metrics.get(log.recorded_by)
        if metric is None:
            continue
        tech = technicians[log.recorded_by]

        # A ticket counts once per technician, however many machines were logged
        key = (log.recorded_by, log.ticket_id)
        if log.ticket_id and key not in counted:
            metric.total_tickets += 1
            counted.add(key)

        chargeout = tech.chargeout_rate or settings.default_chargeout_rate
        pay_rate = tech.internal_pay_rate or settings.default_internal_pay_rate
        revenue = log.hours_worked * chargeout
        cost = log.hours_worked * pay_rate
        metric.estimated_revenue += revenue
        metric.internal_cost += cost
        metric.estimated_profit += revenue - cost

    for metric in metrics.values():
        if metric.estimated_revenue > 0:
            metric.profit_margin = _round_half_up(metric.estimated_profit / metric.estimated_revenue * 100)

    active = [m for m in metrics.values() if m.total_tickets > 0]
    return sorted(active, key=lambda m: m.estimated_revenue, reverse=True)


def get_revenue_metrics(db: Session, user: Optional[User]) -> List[RevenueMetrics]:
    if not has_role(user, REPORT_ROLES):
        return []
    return _compute_revenue_metrics(db)


# ---------- Service quality ----------

@cached_query("service-quality-metrics", tags=[CacheTags.REPORTS, CacheTags.TICKETS, CacheTags.WORK_LOGS])
def _compute_service_quality_metrics(db: Session) -> ServiceQualityMetrics:
    tickets = db.query(Ticket).all()
    metrics = ServiceQualityMetrics(total_tickets=len(tickets))
    resolution = _Mean()
    issue_counts: Dict[str, int] = defaultdict(int)
    machine_issues: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    for ticket in tickets:
        if ticket.status == "Closed":
            metrics.closed_tickets += 1
            hours = _resolution_hours(ticket)
            if hours is not None:
                resolution.add(hours)

        issue = _issue_key(ticket)
        issue_counts[issue] += 1
        for machine in ticket.machines or []:
            machine_issues[machine.get("serial_number") or "Unknown"][issue] += 1

    complete = {
        (log.ticket_id, log.machine_id)
        for log in db.query(MachineWorkLog).all()
        if log.departure_time and log.work_performed and log.outcome
    }
    first_time_fixes = 0
    for ticket in tickets:
        if ticket.status != "Closed" or not ticket.machines:
            continue
        if all((ticket.id, m.get("machine_id")) in complete for m in ticket.machines):
            first_time_fixes += 1

    metrics.avg_resolution_hours = resolution.rounded()
    if metrics.closed_tickets:
        metrics.first_time_fix_rate = _round_half_up(first_time_fixes / metrics.closed_tickets * 100)
        metrics.repeat_ticket_rate = 100 - metrics.first_time_fix_rate

    metrics.top_issue_types = [
        IssueCount(issue=issue, count=count)
        for issue, count in sorted(issue_counts.items(), key=lambda item: item[1], reverse=True)[:5]
    ]
    repeats = [
        MachineRepeatIssue(serial_number=serial, issue=issue, count=count)
        for serial, issues in machine_issues.items()
        for issue, count in issues.items()
        if count > 1
    ]
    metrics.machines_with_repeat_issues = sorted(repeats, key=lambda r: r.count, reverse=True)[:10]
    return metrics


def get_service_quality_metrics(db: Session, user: Optional[User]) -> ServiceQualityMetrics:
    if not has_role(user, REPORT_ROLES):
        return ServiceQualityMetrics()
    return _compute_service_quality_metrics(db)
