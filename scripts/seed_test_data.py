"""
Seed the local database with sample users, customers, machines and parts.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for users and customers, serial number
for machines, name for parts). A sample ticket is only created when the
database has no tickets yet.
"""

from datetime import datetime, timezone

from fieldservice.auth.security import get_password_hash
from fieldservice.db import SessionLocal, Base, engine
from fieldservice.models.models import Customer, Machine, Part, Ticket, User
from fieldservice.services.tickets import create_ticket


def ensure_user(session, email: str, name: str, password: str, role: str, **rates) -> User:
    user = session.query(User).filter(User.email == email).first()
    now = datetime.now(timezone.utc)
    if user:
        user.name = name
        user.role = role
        for k, v in rates.items():
            setattr(user, k, v)
        # Keep an existing password; only fill it in when missing
        if not user.password_hash:
            user.password_hash = get_password_hash(password)
        session.flush()
        return user
    user = User(
        email=email,
        name=name,
        role=role,
        password_hash=get_password_hash(password),
        disabled=False,
        created_at=now,
        updated_at=now,
        **rates,
    )
    session.add(user)
    session.flush()
    return user


def ensure_customer(session, email: str, company_name: str, **kwargs) -> Customer:
    row = session.query(Customer).filter(Customer.email == email).first()
    now = datetime.now(timezone.utc)
    if row:
        row.company_name = company_name
        for k, v in kwargs.items():
            if hasattr(row, k):
                setattr(row, k, v)
        row.updated_at = now
        session.flush()
        return row
    row = Customer(
        email=email,
        company_name=company_name,
        is_disabled=False,
        created_at=now,
        updated_at=now,
        **{k: v for k, v in kwargs.items() if hasattr(Customer, k)}
    )
    session.add(row)
    session.flush()
    return row


def ensure_machine(session, customer: Customer, serial_number: str, machine_type: str, **kwargs) -> Machine:
    row = session.query(Machine).filter(Machine.serial_number == serial_number).first()
    now = datetime.now(timezone.utc)
    if row:
        row.customer_id = customer.id
        row.type = machine_type
        for k, v in kwargs.items():
            setattr(row, k, v)
        row.updated_at = now
        session.flush()
        return row
    row = Machine(
        customer_id=customer.id,
        serial_number=serial_number,
        type=machine_type,
        created_at=now,
        updated_at=now,
        **kwargs,
    )
    session.add(row)
    session.flush()
    return row


def ensure_part(session, name: str, **kwargs) -> Part:
    row = session.query(Part).filter(Part.name == name).first()
    now = datetime.now(timezone.utc)
    if row:
        for k, v in kwargs.items():
            setattr(row, k, v)
        row.updated_at = now
        session.flush()
        return row
    row = Part(name=name, created_at=now, updated_at=now, **kwargs)
    session.add(row)
    session.flush()
    return row


def main() -> None:
    # Ensure tables exist (safe for SQLite dev)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        # Users
        ensure_user(session, "admin@example.com", "Ada Admin", "TestAdmin123!", "admin")
        ensure_user(session, "manager@example.com", "Morgan Manager", "TestUser123!", "management")
        dispatcher = ensure_user(session, "dispatch@example.com", "Casey Dispatch", "TestUser123!", "call_admin")
        tech = ensure_user(
            session,
            "tech@example.com",
            "Taylor Tech",
            "TestUser123!",
            "technician",
            internal_pay_rate=38.0,
            chargeout_rate=125.0,
        )

        # Customers and their machines
        cafe = ensure_customer(
            session,
            "owner@cornercafe.com",
            "Corner Cafe",
            contact_person="Jamie Owner",
            phone="604-555-0100",
            address="12 Water St, Vancouver",
        )
        roastery = ensure_customer(
            session,
            "ops@hillsideroastery.com",
            "Hillside Roastery",
            contact_person="Robin Ops",
            phone="604-555-0200",
            address="400 Hill Rd, Burnaby",
        )
        espresso = ensure_machine(session, cafe, "ESP-1001", "Espresso", location="Front counter")
        grinder = ensure_machine(session, cafe, "GRD-2001", "Grinder", location="Front counter")
        ensure_machine(session, roastery, "CRE-3001", "Crescendo", location="Tasting room")

        # Parts
        ensure_part(session, "Group Head Gasket", description="8mm group head gasket", category="Seals", quantity_in_stock=40, min_quantity=10)
        ensure_part(session, "Burr Set 64mm", description="Flat burr set for 64mm grinders", category="Grinding", quantity_in_stock=4, min_quantity=5)
        ensure_part(session, "Steam Wand Tip", description="Four-hole steam tip", category="Steam", quantity_in_stock=12, min_quantity=3)

        session.commit()

        if session.query(Ticket).count() == 0:
            result = create_ticket(session, dispatcher, {
                "machines": [
                    {
                        "machine_id": m.id,
                        "machine_type": m.type,
                        "serial_number": m.serial_number,
                        "customer_id": cafe.id,
                        "customer_name": cafe.company_name,
                        "priority": priority,
                    }
                    for m, priority in ((espresso, "High"), (grinder, "Medium"))
                ],
                "issue_description": "Espresso machine losing pressure and grinder jamming during rush",
                "contact_person": "Jamie Owner",
                "assigned_to": tech.id,
            })
            if not result["success"]:
                raise RuntimeError(result["error"])
            print(f"Created sample ticket {result['ticket_number']}")

        print("Seed data ready: admin@example.com / TestAdmin123!")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
