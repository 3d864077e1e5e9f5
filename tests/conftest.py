import os

# Settings are read at import time; keep the app off the dev database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("TZ_DEFAULT", "America/Vancouver")

from datetime import datetime

import pytest
import pytz
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldservice.auth.security import create_access_token
from fieldservice.cache import cache
from fieldservice.db import Base, get_db
from fieldservice.models.models import Customer, Machine, Part, User


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

# Mid-morning in the business timezone, far from any day boundary
FIXED_NOW = pytz.timezone("America/Vancouver").localize(datetime(2025, 3, 14, 10, 0)).astimezone(pytz.UTC)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    cache.clear()
    yield
    cache.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_user(db, name, role, **kwargs):
    user = User(name=name, email=f"{name.lower().replace(' ', '.')}@example.com", role=role, disabled=False, **kwargs)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return make_user(db, "Ada Admin", "admin")


@pytest.fixture
def manager(db):
    return make_user(db, "Morgan Manager", "management")


@pytest.fixture
def call_admin(db):
    return make_user(db, "Casey Dispatch", "call_admin")


@pytest.fixture
def tech1(db):
    return make_user(db, "Taylor Tech", "technician", chargeout_rate=100.0, internal_pay_rate=40.0)


@pytest.fixture
def tech2(db):
    return make_user(db, "Jordan Tech", "technician")


@pytest.fixture
def customer(db):
    row = Customer(
        company_name="Corner Cafe",
        contact_person="Jamie Owner",
        phone="604-555-0100",
        email="owner@cornercafe.com",
        address="12 Water St, Vancouver",
        is_disabled=False,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def machines(db, customer):
    rows = [
        Machine(customer_id=customer.id, type="Espresso", serial_number="ESP-1001"),
        Machine(customer_id=customer.id, type="Grinder", serial_number="GRD-2001"),
    ]
    db.add_all(rows)
    db.commit()
    for row in rows:
        db.refresh(row)
    return rows


@pytest.fixture
def part(db):
    row = Part(name="Group Head Gasket", description="8mm gasket", category="Seals", quantity_in_stock=5, min_quantity=2)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def ticket_machine(machine, customer, priority="Medium"):
    return {
        "machine_id": machine.id,
        "machine_type": machine.type,
        "serial_number": machine.serial_number,
        "customer_id": customer.id,
        "customer_name": customer.company_name,
        "priority": priority,
    }


def ticket_payload(machines, customer, priority="Medium", **extra):
    payload = {
        "machines": [ticket_machine(m, customer, priority) for m in machines],
        "issue_description": "Machine leaking water from the group head",
        "contact_person": "Jamie Owner",
    }
    payload.update(extra)
    return payload


def work_details(**extra):
    data = {
        "arrival_time": "2025-03-14T17:00:00Z",
        "departure_time": "2025-03-14T18:30:00Z",
        "hours_worked": 1.5,
        "work_performed": "Replaced the group head gasket and descaled",
        "outcome": "Machine working normally",
    }
    data.update(extra)
    return data


@pytest.fixture
def fixed_now(monkeypatch):
    monkeypatch.setattr("fieldservice.services.tickets.utc_now", lambda: FIXED_NOW)
    return FIXED_NOW


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from fieldservice.main import app

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role)}"}
