from datetime import timedelta

from conftest import make_user, ticket_payload, work_details

from fieldservice.models.models import Ticket, User
from fieldservice.services.tickets import (
    close_ticket,
    create_ticket,
    generate_ticket_number,
    get_ticket,
    list_tickets,
    technician_update_ticket,
    update_ticket,
)
from fieldservice.services.work_logs import add_work_log_entry


def _ticket(db, ticket_id):
    db.expire_all()
    return db.query(Ticket).filter(Ticket.id == ticket_id).one()


def test_create_without_technician_is_open(db, call_admin, customer, machines, fixed_now):
    result = create_ticket(db, call_admin, ticket_payload(machines[:1], customer))

    assert result["success"] is True
    ticket = _ticket(db, result["ticket_id"])
    assert ticket.status == "Open"
    assert ticket.assigned_to is None
    assert ticket.created_by == call_admin.id
    assert ticket.machines[0]["serial_number"] == "ESP-1001"


def test_create_with_technician_is_assigned(db, call_admin, tech1, customer, machines, fixed_now):
    result = create_ticket(db, call_admin, ticket_payload(machines, customer, assigned_to=tech1.id))

    ticket = _ticket(db, result["ticket_id"])
    assert ticket.status == "Assigned"
    assert ticket.assigned_to_name == "Taylor Tech"
    assert len(ticket.machines) == 2


def test_blank_assignee_counts_as_unassigned(db, admin, customer, machines, fixed_now):
    result = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to="  "))

    assert _ticket(db, result["ticket_id"]).status == "Open"


def test_ticket_numbers_count_up_within_a_day(db, call_admin, customer, machines, fixed_now):
    numbers = [
        create_ticket(db, call_admin, ticket_payload(machines[:1], customer))["ticket_number"]
        for _ in range(3)
    ]

    assert numbers == ["TKT-20250314-001", "TKT-20250314-002", "TKT-20250314-003"]


def test_ticket_number_uses_business_day(db):
    # 06:30 UTC on the 15th is still the evening of the 14th in Vancouver
    from datetime import datetime

    import pytz

    late_evening = pytz.UTC.localize(datetime(2025, 3, 15, 6, 30))
    assert generate_ticket_number(db, late_evening) == "TKT-20250314-001"


def test_create_requires_ticket_admin_role(db, tech1, customer, machines):
    result = create_ticket(db, tech1, ticket_payload(machines[:1], customer))

    assert result == {"success": False, "error": "Unauthorized"}
    assert db.query(Ticket).count() == 0


def test_create_rejects_missing_machines(db, admin, customer, machines):
    result = create_ticket(db, admin, ticket_payload([], customer))

    assert result["success"] is False
    assert result["error"] == "At least one machine is required"


def test_create_rejects_short_description(db, admin, customer, machines):
    result = create_ticket(db, admin, ticket_payload(machines[:1], customer, issue_description="broken"))

    assert result == {"success": False, "error": "Please provide a detailed description"}


def test_update_assigning_moves_to_assigned(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer))["ticket_id"]

    assert update_ticket(db, admin, ticket_id, {"assigned_to": tech1.id}) == {"success": True}

    ticket = _ticket(db, ticket_id)
    assert ticket.status == "Assigned"
    assert ticket.assigned_to_name == "Taylor Tech"


def test_update_unassigning_reopens(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]

    update_ticket(db, admin, ticket_id, {"assigned_to": ""})

    ticket = _ticket(db, ticket_id)
    assert ticket.status == "Open"
    assert ticket.assigned_to is None


def test_update_assigned_status_needs_technician(db, admin, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer))["ticket_id"]

    result = update_ticket(db, admin, ticket_id, {"status": "Assigned"})

    assert result == {"success": False, "error": "A technician must be assigned"}
    assert _ticket(db, ticket_id).status == "Open"


def test_update_closing_sets_and_reopening_clears_closed_at(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]

    update_ticket(db, admin, ticket_id, {"status": "Closed"})
    assert _ticket(db, ticket_id).closed_at is not None

    update_ticket(db, admin, ticket_id, {"status": "Assigned"})
    ticket = _ticket(db, ticket_id)
    assert ticket.status == "Assigned"
    assert ticket.closed_at is None


def test_reassigning_a_closed_ticket_reopens_it(db, call_admin, tech1, tech2, customer, machines, fixed_now):
    ticket_id = create_ticket(db, call_admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]
    technician_update_ticket(db, tech1, ticket_id, {"departure_time": "2025-03-14T19:00:00Z"})
    assert _ticket(db, ticket_id).status == "Closed"

    assert update_ticket(db, call_admin, ticket_id, {"assigned_to": tech2.id}) == {"success": True}

    ticket = _ticket(db, ticket_id)
    assert ticket.status == "Assigned"
    assert ticket.assigned_to_name == "Jordan Tech"
    assert ticket.closed_at is None
    stats = db.query(User).filter(User.id == call_admin.id).one().stats
    assert (stats["closed_tickets"], stats["assigned_tickets"], stats["active_tickets"]) == (0, 1, 1)


def test_update_unknown_ticket(db, admin):
    assert update_ticket(db, admin, "missing", {"status": "Open"}) == {"success": False, "error": "Ticket not found"}


def test_close_requires_work_for_every_machine(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines, customer, assigned_to=tech1.id))["ticket_id"]
    add_work_log_entry(db, tech1, ticket_id, machines[0].id, work_details())

    result = close_ticket(db, tech1, ticket_id)

    assert result == {"success": False, "error": "All machines must have work details logged before closing"}
    assert _ticket(db, ticket_id).status == "Assigned"


def test_close_after_logging_every_machine(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines, customer, assigned_to=tech1.id))["ticket_id"]
    for machine in machines:
        assert add_work_log_entry(db, tech1, ticket_id, machine.id, work_details())["success"]

    assert close_ticket(db, tech1, ticket_id) == {"success": True}

    ticket = _ticket(db, ticket_id)
    assert ticket.status == "Closed"
    assert ticket.closed_at is not None


def test_close_rejects_log_without_outcome(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]
    add_work_log_entry(db, tech1, ticket_id, machines[0].id, {"work_performed": "Replaced the pump assembly"})

    assert close_ticket(db, tech1, ticket_id)["success"] is False


def test_close_only_by_assigned_technician(db, admin, tech1, tech2, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]

    assert close_ticket(db, tech2, ticket_id) == {"success": False, "error": "This ticket is not assigned to you"}
    assert close_ticket(db, admin, ticket_id) == {"success": False, "error": "Unauthorized"}


def test_technician_update_with_departure_closes_without_log_check(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines, customer, assigned_to=tech1.id))["ticket_id"]

    result = technician_update_ticket(db, tech1, ticket_id, {
        "arrival_time": "2025-03-14T17:00:00Z",
        "departure_time": "2025-03-14T19:00:00Z",
        "hours_worked": 2,
        "work_performed": "Descaled boiler and replaced the gasket",
        "outcome": "Back in service",
        "parts_used": [{"part_id": "p1", "part_name": "Gasket", "quantity": 2}],
        "maintenance_recommendation": {"date": "2025-06-01T00:00:00Z", "notes": "Descale again"},
    })

    assert result == {"success": True}
    ticket = _ticket(db, ticket_id)
    assert ticket.status == "Closed"
    assert ticket.closed_at is not None
    assert ticket.hours_worked == 2
    assert ticket.parts_used == [{"part_id": "p1", "part_name": "Gasket", "quantity": 2}]
    assert ticket.maintenance_recommendation["notes"] == "Descale again"


def test_repeated_departure_keeps_first_closed_at(db, admin, tech1, customer, machines, fixed_now, monkeypatch):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]
    technician_update_ticket(db, tech1, ticket_id, {"departure_time": "2025-03-14T19:00:00Z"})
    first_closed_at = _ticket(db, ticket_id).closed_at

    monkeypatch.setattr("fieldservice.services.tickets.utc_now", lambda: fixed_now + timedelta(days=1))
    assert technician_update_ticket(db, tech1, ticket_id, {"departure_time": "2025-03-15T19:00:00Z"}) == {"success": True}

    ticket = _ticket(db, ticket_id)
    assert ticket.status == "Closed"
    assert ticket.closed_at == first_closed_at
    assert ticket.departure_time.day == 15


def test_technician_update_without_departure_keeps_status(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]

    technician_update_ticket(db, tech1, ticket_id, {"arrival_time": "2025-03-14T17:00:00Z"})

    ticket = _ticket(db, ticket_id)
    assert ticket.status == "Assigned"
    assert ticket.arrival_time is not None


def test_technician_update_rejects_out_of_range_hours(db, admin, tech1, customer, machines, fixed_now):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]

    result = technician_update_ticket(db, tech1, ticket_id, {"hours_worked": 20})

    assert result == {"success": False, "error": "Hours worked cannot exceed 16 per shift"}


def test_technicians_only_see_their_tickets(db, admin, tech1, tech2, customer, machines, fixed_now):
    mine = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]
    create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech2.id))

    assert [t["id"] for t in list_tickets(db, tech1)] == [mine]
    assert len(list_tickets(db, admin)) == 2
    assert get_ticket(db, tech2, mine) == {"success": False, "error": "This ticket is not assigned to you"}


def test_disabled_user_cannot_create(db, customer, machines):
    user = make_user(db, "Dana Disabled", "admin")
    user.disabled = True
    db.commit()

    assert create_ticket(db, user, ticket_payload(machines[:1], customer))["error"] == "Unauthorized"
