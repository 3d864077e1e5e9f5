from conftest import ticket_payload, work_details

from fieldservice.models.models import MachineWorkLog
from fieldservice.services.tickets import create_ticket
from fieldservice.services.work_logs import (
    add_bulk_work_log_entries,
    add_work_log_entry,
    get_work_logs_for_ticket,
)


def _assigned_ticket(db, admin, tech, customer, machines):
    return create_ticket(db, admin, ticket_payload(machines, customer, assigned_to=tech.id))["ticket_id"]


def _bulk_payload(machines, **extra):
    payload = {
        "arrival_time": "2025-03-14T17:00:00Z",
        "departure_time": "2025-03-14T19:00:00Z",
        "hours_worked": 2,
        "machine_work_logs": [
            {
                "machine_id": machines[0].id,
                "work_performed": "Rebuilt the brew group",
                "outcome": "Pressure stable",
                "parts_used": [{"part_id": "p1", "part_name": "Gasket", "quantity": 1}],
            },
            {
                "machine_id": machines[1].id,
                "work_performed": "Cleared jammed burrs",
                "outcome": "Grinding evenly",
                "repairs": "Burr carrier realigned",
            },
        ],
    }
    payload.update(extra)
    return payload


def test_single_entry_creates_one_log_per_machine(db, admin, tech1, customer, machines):
    ticket_id = _assigned_ticket(db, admin, tech1, customer, machines)

    assert add_work_log_entry(db, tech1, ticket_id, machines[0].id, work_details()) == {"success": True}
    assert add_work_log_entry(db, tech1, ticket_id, machines[0].id, {"outcome": "Still working after retest"})["success"]

    logs = db.query(MachineWorkLog).filter(MachineWorkLog.ticket_id == ticket_id).all()
    assert len(logs) == 1
    log = logs[0]
    assert log.outcome == "Still working after retest"
    # Untouched fields survive a partial update
    assert log.work_performed == "Replaced the group head gasket and descaled"
    assert log.machine_serial_number == "ESP-1001"
    assert log.recorded_by == tech1.id


def test_entry_for_machine_not_on_ticket(db, admin, tech1, customer, machines):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]

    result = add_work_log_entry(db, tech1, ticket_id, machines[1].id, work_details())

    assert result == {"success": False, "error": "Machine not found in ticket"}


def test_entry_requires_assigned_technician(db, admin, tech1, tech2, customer, machines):
    ticket_id = _assigned_ticket(db, admin, tech1, customer, machines)

    assert add_work_log_entry(db, tech2, ticket_id, machines[0].id, work_details())["error"] == "This ticket is not assigned to you"
    assert add_work_log_entry(db, admin, ticket_id, machines[0].id, work_details())["error"] == "Unauthorized"
    assert add_work_log_entry(db, tech1, "missing", machines[0].id, work_details())["error"] == "Ticket not found"


def test_bulk_entries_share_visit_fields(db, admin, tech1, customer, machines):
    ticket_id = _assigned_ticket(db, admin, tech1, customer, machines)

    result = add_bulk_work_log_entries(db, tech1, ticket_id, _bulk_payload(machines))

    assert result == {"success": True, "count": 2}
    logs = {log.machine_id: log for log in db.query(MachineWorkLog).all()}
    first, second = logs[machines[0].id], logs[machines[1].id]
    assert first.arrival_time == second.arrival_time
    assert first.departure_time == second.departure_time
    assert first.hours_worked == second.hours_worked == 2
    assert first.work_performed == "Rebuilt the brew group"
    assert second.work_performed == "Cleared jammed burrs"
    assert first.outcome != second.outcome
    assert second.repairs == "Burr carrier realigned"
    assert first.parts_used == [{"part_id": "p1", "part_name": "Gasket", "quantity": 1}]
    assert second.parts_used == []


def test_bulk_resubmission_updates_in_place(db, admin, tech1, customer, machines):
    ticket_id = _assigned_ticket(db, admin, tech1, customer, machines)
    add_bulk_work_log_entries(db, tech1, ticket_id, _bulk_payload(machines))

    add_bulk_work_log_entries(db, tech1, ticket_id, _bulk_payload(machines, hours_worked=3))

    logs = db.query(MachineWorkLog).all()
    assert len(logs) == 2
    assert {log.hours_worked for log in logs} == {3}


def test_bulk_skips_machines_not_on_ticket(db, admin, tech1, customer, machines):
    ticket_id = create_ticket(db, admin, ticket_payload(machines[:1], customer, assigned_to=tech1.id))["ticket_id"]

    result = add_bulk_work_log_entries(db, tech1, ticket_id, _bulk_payload(machines))

    assert result == {"success": True, "count": 1}
    assert db.query(MachineWorkLog).count() == 1


def test_bulk_ignores_incomplete_maintenance_note(db, admin, tech1, customer, machines):
    ticket_id = _assigned_ticket(db, admin, tech1, customer, machines)
    payload = _bulk_payload(machines)
    payload["machine_work_logs"][0]["maintenance_recommendation"] = {"date": None, "notes": "Check seals"}
    payload["machine_work_logs"][1]["maintenance_recommendation"] = {"date": "2025-09-01T00:00:00Z", "notes": "Replace burrs"}

    add_bulk_work_log_entries(db, tech1, ticket_id, payload)

    logs = {log.machine_id: log for log in db.query(MachineWorkLog).all()}
    assert logs[machines[0].id].maintenance_recommendation is None
    assert logs[machines[1].id].maintenance_recommendation["notes"] == "Replace burrs"


def test_bulk_requires_at_least_one_entry(db, admin, tech1, customer, machines):
    ticket_id = _assigned_ticket(db, admin, tech1, customer, machines)

    result = add_bulk_work_log_entries(db, tech1, ticket_id, _bulk_payload(machines, machine_work_logs=[]))

    assert result == {"success": False, "error": "At least one machine work log is required"}


def test_get_work_logs_reflects_new_entries(db, admin, tech1, customer, machines):
    ticket_id = _assigned_ticket(db, admin, tech1, customer, machines)
    assert get_work_logs_for_ticket(db, tech1, ticket_id) == {"success": True, "work_logs": []}

    add_work_log_entry(db, tech1, ticket_id, machines[0].id, work_details(
        maintenance_recommendation={"date": "2025-06-01T00:00:00Z", "notes": "Descale"},
    ))

    result = get_work_logs_for_ticket(db, tech1, ticket_id)
    assert result["success"] is True
    [log] = result["work_logs"]
    assert log["machine_id"] == machines[0].id
    assert log["hours_worked"] == 1.5
    assert log["maintenance_recommendation"]["notes"] == "Descale"
    assert log["maintenance_recommendation"]["date"].year == 2025
