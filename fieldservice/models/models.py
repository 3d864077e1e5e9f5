import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[str]:
    return mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="technician", index=True)  # admin|management|call_admin|technician
    disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    internal_pay_rate: Mapped[Optional[float]] = mapped_column(Float)  # Hourly cost to the company
    chargeout_rate: Mapped[Optional[float]] = mapped_column(Float)  # Hourly rate billed to customers
    # Denormalized ticket counters, call_admin users only
    stats: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = uuid_pk()
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    contact_person: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    address: Mapped[Optional[str]] = mapped_column(Text)
    is_disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    machines = relationship("Machine", back_populates="customer")


class Machine(Base):
    __tablename__ = "machines"

    id: Mapped[str] = uuid_pk()
    customer_id: Mapped[str] = mapped_column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # Crescendo|Espresso|Grinder|Other
    serial_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255))  # Position at the customer site
    notes: Mapped[Optional[str]] = mapped_column(Text)
    installation_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="machines")


class Part(Base):
    __tablename__ = "parts"

    id: Mapped[str] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    quantity_in_stock: Mapped[int] = mapped_column(Integer, default=0)
    min_quantity: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = uuid_pk()
    ticket_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # TKT-YYYYMMDD-NNN
    # Snapshot list of {machine_id, machine_type, serial_number, customer_id, customer_name, priority}
    machines: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    issue_description: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    assigned_to_name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Open", index=True)  # Open|Assigned|Closed
    scheduled_visit_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    additional_notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Visit fields written by the technician-side update
    arrival_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    departure_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    hours_worked: Mapped[Optional[float]] = mapped_column(Float)
    work_performed: Mapped[Optional[str]] = mapped_column(Text)
    outcome: Mapped[Optional[str]] = mapped_column(Text)
    parts_used: Mapped[Optional[list]] = mapped_column(JSON)
    maintenance_recommendation: Mapped[Optional[dict]] = mapped_column(JSON)

    __table_args__ = (
        Index("idx_tickets_created_by_created_at", "created_by", "created_at"),
    )


class MachineWorkLog(Base):
    """Per-machine record of a technician visit on a ticket"""
    __tablename__ = "machine_work_logs"

    id: Mapped[str] = uuid_pk()
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    machine_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    machine_type: Mapped[Optional[str]] = mapped_column(String(50))  # Snapshot from the ticket
    machine_serial_number: Mapped[Optional[str]] = mapped_column(String(100))  # Snapshot from the ticket
    recorded_by: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    arrival_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    departure_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    hours_worked: Mapped[Optional[float]] = mapped_column(Float)
    work_performed: Mapped[Optional[str]] = mapped_column(Text)
    outcome: Mapped[Optional[str]] = mapped_column(Text)
    repairs: Mapped[Optional[str]] = mapped_column(Text)
    parts_used: Mapped[list] = mapped_column(JSON, default=list)  # [{part_id, part_name, quantity}]
    maintenance_recommendation: Mapped[Optional[dict]] = mapped_column(JSON)  # {date, notes}
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("ticket_id", "machine_id", name="uq_work_log_ticket_machine"),
    )
