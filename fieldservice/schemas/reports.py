from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class TechnicianMetrics(BaseModel):
    uid: str
    name: str
    total_assigned: int = 0
    total_closed: int = 0
    open_count: int = 0
    avg_resolution_hours: float = 0
    last_ticket_date: Optional[datetime] = None


class AgingTicket(BaseModel):
    ticket_number: str
    days_open: int
    priority: str


def _empty_priorities() -> Dict[str, int]:
    return {"Urgent": 0, "High": 0, "Medium": 0, "Low": 0}


class TicketMetrics(BaseModel):
    total_tickets: int = 0
    open_tickets: int = 0
    assigned_tickets: int = 0
    closed_tickets: int = 0
    avg_resolution_hours: float = 0
    avg_response_time_hours: float = 0
    priority_breakdown: Dict[str, int] = Field(default_factory=_empty_priorities)
    aging_tickets: List[AgingTicket] = []


class CustomerMetrics(BaseModel):
    customer_id: str
    company_name: str
    total_tickets: int = 0
    total_machines: int = 0
    avg_resolution_hours: float = 0
    repeat_issue_count: int = 0
    last_service_date: Optional[datetime] = None


class PartQuantity(BaseModel):
    part_name: str
    quantity: int


class EquipmentMetrics(BaseModel):
    machine_id: str
    type: str
    serial_number: str
    customer_name: str
    total_incidents: int = 0
    last_service_date: Optional[datetime] = None
    parts_used_count: int = 0
    parts_used: List[PartQuantity] = []


class RevenueMetrics(BaseModel):
    technician_id: str
    technician_name: str
    total_tickets: int = 0
    estimated_revenue: float = 0
    internal_cost: float = 0
    estimated_profit: float = 0
    profit_margin: int = 0


class IssueCount(BaseModel):
    issue: str
    count: int


class MachineRepeatIssue(BaseModel):
    serial_number: str
    issue: str
    count: int


class ServiceQualityMetrics(BaseModel):
    total_tickets: int = 0
    closed_tickets: int = 0
    first_time_fix_rate: int = 0
    repeat_ticket_rate: int = 0
    avg_resolution_hours: float = 0
    top_issue_types: List[IssueCount] = []
    machines_with_repeat_issues: List[MachineRepeatIssue] = []


# ---------- Report base data ----------

class ReportTicketMachine(BaseModel):
    machine_id: str
    customer_id: Optional[str] = None
    customer_name: str = "Unknown"
    machine_type: str = "Unknown"
    serial_number: str = "Unknown"
    priority: Optional[str] = None


class ReportTicket(BaseModel):
    id: str
    ticket_number: str = ""
    status: str = "Open"
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    issue_description: Optional[str] = None
    machines: List[ReportTicketMachine] = []


class ReportPartUsed(BaseModel):
    part_id: Optional[str] = None
    part_name: str
    quantity: int = 1


class ReportWorkLog(BaseModel):
    id: str
    ticket_id: str
    machine_id: str
    recorded_by: Optional[str] = None
    arrival_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    hours_worked: Optional[float] = None
    work_performed: Optional[str] = None
    outcome: Optional[str] = None
    repairs: Optional[str] = None
    parts_used: List[ReportPartUsed] = []


class ReportCustomer(BaseModel):
    id: str
    company_name: str = "Unknown"


class ReportMachine(BaseModel):
    id: str
    customer_id: str
    type: str = "Unknown"
    serial_number: str = "Unknown"


class ReportTechnician(BaseModel):
    id: str
    name: str = "Unknown"


class ReportPart(BaseModel):
    id: str
    name: str = "Unknown"
    category: Optional[str] = None


class ReportBaseData(BaseModel):
    tickets: List[ReportTicket] = []
    work_logs: List[ReportWorkLog] = []
    customers: List[ReportCustomer] = []
    machines: List[ReportMachine] = []
    technicians: List[ReportTechnician] = []
    parts: List[ReportPart] = []


class ReportFilters(BaseModel):
    """
    Filters for the time reports. Dates are inclusive calendar days; an empty
    list means no filtering on that dimension.
    """
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    statuses: List[str] = []
    technician_ids: List[str] = []
    customer_ids: List[str] = []
    part_names: List[str] = []
    part_categories: List[str] = []


# ---------- Time reports ----------

class TimeLogEntry(BaseModel):
    id: str
    ticket_id: str
    ticket_number: str
    machine_id: str
    recorded_by: Optional[str] = None
    technician_name: str = "Unknown"
    customer_name: str = "Unknown"
    hours_worked: float
    log_date: Optional[datetime] = None
    work_performed: Optional[str] = None
    outcome: Optional[str] = None


class CustomerHours(BaseModel):
    customer_id: str
    customer_name: str
    hours: float


class TechnicianHours(BaseModel):
    technician_id: str
    technician_name: str
    hours: float


class TechnicianTimeRow(BaseModel):
    technician_id: str
    technician_name: str
    total_hours: float = 0
    ticket_count: int = 0
    customers: List[CustomerHours] = []
    logs: List[TimeLogEntry] = []


class CustomerTimeRow(BaseModel):
    customer_id: str
    customer_name: str
    total_hours: float = 0
    ticket_count: int = 0
    machine_count: int = 0
    technicians: List[TechnicianHours] = []
    logs: List[TimeLogEntry] = []


class TechnicianTimeReport(BaseModel):
    rows: List[TechnicianTimeRow] = []
    total_hours: float = 0


class CustomerTimeReport(BaseModel):
    rows: List[CustomerTimeRow] = []
    total_hours: float = 0
