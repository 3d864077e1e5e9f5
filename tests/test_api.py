from conftest import auth_headers, make_user, ticket_payload, work_details

from fieldservice.auth.security import create_refresh_token, get_password_hash


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers.get("X-Request-ID")


def test_login_refresh_and_me(client, db):
    user = make_user(db, "Lou Login", "management", password_hash=get_password_hash("TestUser123!"))

    r = client.post("/auth/login", json={"email": "Lou.Login@example.com", "password": "TestUser123!"})
    assert r.status_code == 200, r.text
    tokens = r.json()

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == user.id
    assert me.json()["role"] == "management"

    r = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200
    assert r.json()["access_token"]


def test_login_rejects_bad_password(client, db):
    make_user(db, "Lou Login", "admin", password_hash=get_password_hash("TestUser123!"))

    r = client.post("/auth/login", json={"email": "lou.login@example.com", "password": "wrong"})
    assert r.status_code == 401


def test_refresh_token_is_not_an_access_token(client, admin):
    r = client.get("/tickets", headers={"Authorization": f"Bearer {create_refresh_token(admin.id)}"})
    assert r.status_code == 401


def test_requests_need_authentication(client):
    assert client.get("/tickets").status_code == 401


def test_disabled_user_is_rejected(client, db, tech1):
    tech1.disabled = True
    db.commit()

    assert client.get("/tickets", headers=auth_headers(tech1)).status_code == 401


def test_ticket_flow_over_http(client, call_admin, tech1, tech2, customer, machines):
    r = client.post("/tickets", json=ticket_payload(machines, customer, assigned_to=tech1.id), headers=auth_headers(call_admin))
    assert r.status_code == 200, r.text
    ticket_id = r.json()["ticket_id"]
    assert r.json()["ticket_number"].startswith("TKT-")

    assert client.get(f"/tickets/{ticket_id}", headers=auth_headers(tech2)).status_code == 403
    assert client.get("/tickets/missing", headers=auth_headers(tech1)).status_code == 404

    tech = auth_headers(tech1)
    r = client.put(f"/tickets/{ticket_id}/work-logs/{machines[0].id}", json=work_details(), headers=tech)
    assert r.status_code == 200, r.text

    r = client.post(f"/tickets/{ticket_id}/close", headers=tech)
    assert r.status_code == 400
    assert r.json()["detail"] == "All machines must have work details logged before closing"

    r = client.put(f"/tickets/{ticket_id}/work-logs/{machines[1].id}", json=work_details(), headers=tech)
    assert r.status_code == 200
    assert client.post(f"/tickets/{ticket_id}/close", headers=tech).status_code == 200

    r = client.get(f"/tickets/{ticket_id}", headers=tech)
    assert r.json()["status"] == "Closed"
    logs = client.get(f"/tickets/{ticket_id}/work-logs", headers=tech).json()
    assert {log["machine_id"] for log in logs} == {m.id for m in machines}

    assert [t["id"] for t in client.get("/tickets?status=Closed", headers=tech).json()] == [ticket_id]


def test_bulk_work_logs_over_http(client, admin, tech1, customer, machines):
    ticket_id = client.post(
        "/tickets", json=ticket_payload(machines, customer, assigned_to=tech1.id), headers=auth_headers(admin),
    ).json()["ticket_id"]

    r = client.post(f"/tickets/{ticket_id}/work-logs/bulk", headers=auth_headers(tech1), json={
        "arrival_time": "2025-03-14T17:00:00Z",
        "hours_worked": 1,
        "machine_work_logs": [
            {"machine_id": m.id, "work_performed": "Cleaned and calibrated", "outcome": "Working well"}
            for m in machines
        ],
    })

    assert r.status_code == 200, r.text
    assert r.json()["count"] == 2


def test_technician_cannot_create_tickets(client, tech1, customer, machines):
    r = client.post("/tickets", json=ticket_payload(machines, customer), headers=auth_headers(tech1))
    assert r.status_code == 403


def test_ticket_payload_validation(client, admin, customer, machines):
    r = client.post("/tickets", json=ticket_payload([], customer), headers=auth_headers(admin))
    assert r.status_code == 422


def test_assignment_options(client, call_admin, tech1, customer, machines):
    headers = auth_headers(call_admin)

    assert client.get("/tickets/options/technicians", headers=headers).json() == [{"id": tech1.id, "name": "Taylor Tech"}]
    assert client.get("/tickets/options/customers", headers=headers).json()[0]["company_name"] == "Corner Cafe"
    serials = {m["serial_number"] for m in client.get(f"/tickets/options/customers/{customer.id}/machines", headers=headers).json()}
    assert serials == {"ESP-1001", "GRD-2001"}


def test_reports_are_limited_to_management(client, manager, tech1, customer, machines):
    assert client.get("/reports/tickets", headers=auth_headers(tech1)).status_code == 403

    r = client.get("/reports/tickets", headers=auth_headers(manager))
    assert r.status_code == 200
    assert r.json()["total_tickets"] == 0

    r = client.get("/reports/time/customers?start_date=2025-01-01&status=Closed", headers=auth_headers(manager))
    assert r.status_code == 200
    assert r.json() == {"rows": [], "total_hours": 0}


def test_customer_and_part_routes(client, admin, part):
    headers = auth_headers(admin)
    r = client.post("/customers", headers=headers, json={
        "company_name": "Harbour Bakery",
        "contact_person": "Lee Baker",
        "phone": "604-555-0300",
        "email": "bakes@harbourbakery.com",
        "address": "9 Pier Lane",
    })
    assert r.status_code == 200, r.text
    customer_id = r.json()["customer_id"]

    assert client.put(f"/customers/{customer_id}/disabled", json={"is_disabled": True}, headers=headers).status_code == 200
    assert client.get("/customers?include_disabled=false", headers=headers).json() == []
    assert client.delete("/customers/missing", headers=headers).status_code == 404

    r = client.post(f"/parts/{part.id}/quantity", json={"quantity": 10, "operation": "use"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Insufficient stock")


def test_user_admin_routes(client, admin, tech1):
    headers = auth_headers(admin)

    assert {u["id"] for u in client.get("/users", headers=headers).json()} == {admin.id, tech1.id}
    r = client.delete(f"/users/{admin.id}", headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "At least one admin must remain in the system"


def test_call_admin_routes(client, admin, call_admin, customer, machines):
    client.post("/tickets", json=ticket_payload(machines, customer, priority="High"), headers=auth_headers(call_admin))
    headers = auth_headers(admin)

    stats = client.get(f"/call-admins/{call_admin.id}/stats", headers=headers).json()
    assert stats["total_tickets"] == 1
    assert stats["high_priority"] == 2
    assert client.post(f"/call-admins/{call_admin.id}/recalculate", headers=headers).status_code == 200
    assert client.get(f"/call-admins/{call_admin.id}/stats", headers=auth_headers(call_admin)).status_code == 403


def test_import_routes(client, manager, customer):
    rows = [{"serialNumber": "CRE-3001", "type": "Crescendo", "companyName": "Corner Cafe"}]

    r = client.post("/imports/machines", json=rows, headers=auth_headers(manager))
    assert r.status_code == 200
    assert r.json()["imported"] == 1

    csv_body = "companyName,contactPerson,phone,email,address\nHarbour Bakery,Lee Baker,604-555-0300,bakes@harbourbakery.com,9 Pier Lane\n"
    r = client.post(
        "/imports/customers/csv",
        files={"file": ("customers.csv", csv_body, "text/csv")},
        headers=auth_headers(manager),
    )
    assert r.status_code == 200
    assert r.json() == {"success": True, "imported": 1, "skipped": 0, "errors": []}
