from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
import enum


class TicketStatus(str, enum.Enum):
    open = "Open"
    assigned = "Assigned"
    closed = "Closed"


class TicketPriority(str, enum.Enum):
    low = "Low"
    medium = "Medium"
    high = "High"
    urgent = "Urgent"


class MachineType(str, enum.Enum):
    crescendo = "Crescendo"
    espresso = "Espresso"
    grinder = "Grinder"
    other = "Other"


class PartUsed(BaseModel):
    part_id: str
    part_name: str
    quantity: int = Field(ge=1)


class MaintenanceRecommendation(BaseModel):
    date: datetime
    notes: str = Field(min_length=1)


class TicketMachine(BaseModel):
    """Point-in-time copy of a machine and its customer embedded in a ticket."""
    machine_id: str = Field(min_length=1)
    machine_type: MachineType
    serial_number: str = Field(min_length=1)
    customer_id: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    priority: TicketPriority


class TicketCreate(BaseModel):
    machines: List[TicketMachine]
    issue_description: str
    contact_person: str
    assigned_to: Optional[str] = None
    scheduled_visit_date: Optional[datetime] = None
    additional_notes: Optional[str] = None

    @field_validator("machines")
    @classmethod
    def at_least_one_machine(cls, v):
        if not v:
            raise ValueError("At least one machine is required")
        return v

    @field_validator("issue_description")
    @classmethod
    def detailed_description(cls, v):
        if len(v.strip()) < 10:
            raise ValueError("Please provide a detailed description")
        return v

    @field_validator("contact_person")
    @classmethod
    def contact_required(cls, v):
        if len(v.strip()) < 2:
            raise ValueError("Contact person is required")
        return v

    @field_validator("assigned_to", "additional_notes", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class TicketUpdate(BaseModel):
    """Partial admin-side edit; only explicitly provided fields are applied."""
    assigned_to: Optional[str] = None
    issue_description: Optional[str] = Field(default=None, min_length=10)
    contact_person: Optional[str] = Field(default=None, min_length=2)
    additional_notes: Optional[str] = None
    status: Optional[TicketStatus] = None
    scheduled_visit_date: Optional[datetime] = None

    @field_validator("assigned_to", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class TechnicianUpdate(BaseModel):
    arrival_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    hours_worked: Optional[float] = None
    work_performed: Optional[str] = None
    outcome: Optional[str] = None
    parts_used: Optional[List[PartUsed]] = None
    maintenance_recommendation: Optional[MaintenanceRecommendation] = None

    @field_validator("hours_worked")
    @classmethod
    def hours_in_shift(cls, v):
        if v is None:
            return v
        if v < 0.25:
            raise ValueError("Hours worked must be at least 0.25")
        if v > 16:
            raise ValueError("Hours worked cannot exceed 16 per shift")
        return v

    @field_validator("work_performed")
    @classmethod
    def work_described(cls, v):
        if v is not None and len(v.strip()) < 10:
            raise ValueError("Please describe the work performed")
        return v

    @field_validator("outcome")
    @classmethod
    def outcome_described(cls, v):
        if v is not None and len(v.strip()) < 5:
            raise ValueError("Please describe the outcome")
        return v


class MachineMaintenanceNote(BaseModel):
    date: Optional[datetime] = None
    notes: Optional[str] = None


class MachineSpecificWork(BaseModel):
    machine_id: str = Field(min_length=1)
    work_performed: str
    outcome: str
    repairs: Optional[str] = None
    parts_used: Optional[List[PartUsed]] = None
    maintenance_recommendation: Optional[MachineMaintenanceNote] = None

    @field_validator("work_performed")
    @classmethod
    def work_described(cls, v):
        if len(v.strip()) < 10:
            raise ValueError("Please describe the work performed")
        return v

    @field_validator("outcome")
    @classmethod
    def outcome_described(cls, v):
        if len(v.strip()) < 5:
            raise ValueError("Please describe the outcome")
        return v


class BulkWorkLog(BaseModel):
    # Visit-level data, shared by every machine in the submission
    arrival_time: datetime
    departure_time: Optional[datetime] = None
    hours_worked: float

    machine_work_logs: List[MachineSpecificWork]

    @field_validator("hours_worked")
    @classmethod
    def hours_in_shift(cls, v):
        if v < 0.25:
            raise ValueError("Hours worked must be at least 0.25")
        if v > 16:
            raise ValueError("Hours worked cannot exceed 16 per shift")
        return v

    @field_validator("machine_work_logs")
    @classmethod
    def at_least_one_log(cls, v):
        if not v:
            raise ValueError("At least one machine work log is required")
        return v


class TicketCreatedResponse(BaseModel):
    success: bool
    ticket_id: str
    ticket_number: str


class WorkLogResponse(BaseModel):
    id: str
    ticket_id: str
    machine_id: str
    machine_type: Optional[str] = None
    machine_serial_number: Optional[str] = None
    recorded_by: Optional[str] = None
    work_performed: str = ""
    outcome: str = ""
    repairs: str = ""
    arrival_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    hours_worked: float = 0
    parts_used: List[PartUsed] = []
    maintenance_recommendation: Optional[MachineMaintenanceNote] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TicketResponse(BaseModel):
    id: str
    ticket_number: str
    machines: List[TicketMachine] = []
    issue_description: str
    contact_person: str
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    status: TicketStatus
    scheduled_visit_date: Optional[datetime] = None
    additional_notes: Optional[str] = None
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    hours_worked: Optional[float] = None
    work_performed: Optional[str] = None
    outcome: Optional[str] = None
    parts_used: Optional[List[PartUsed]] = None
    maintenance_recommendation: Optional[MaintenanceRecommendation] = None

    class Config:
        from_attributes = True


class CustomerOption(BaseModel):
    id: str
    company_name: str
    contact_person: str


class MachineOption(BaseModel):
    id: str
    customer_id: str
    type: str
    serial_number: str


class TechnicianOption(BaseModel):
    id: str
    name: str
