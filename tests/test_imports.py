from fieldservice.models.models import Customer, Machine
from fieldservice.services.imports import import_customers, import_machines, read_csv_rows, validate_customer_row


CUSTOMER_CSV = """companyName,contactPerson,phone,email,address
Hillside Roastery,Robin Ops,604-555-0200,OPS@HillsideRoastery.com,400 Hill Rd
Harbour Bakery,Lee Baker,(604) 555 0300,bakes@harbourbakery.com,9 Pier Lane
"""


def test_read_csv_rows_strips_byte_order_mark():
    rows = read_csv_rows("\ufeff" + CUSTOMER_CSV)

    assert rows[0]["companyName"] == "Hillside Roastery"
    assert len(rows) == 2


def test_customer_row_validation_lists_every_problem():
    problems = validate_customer_row({"companyName": "X", "phone": "123", "email": "nope"})

    assert problems == [
        "contactPerson is required",
        "phone must be a valid phone number",
        "email must be a valid email address",
        "address is required",
    ]


def test_import_customers(db, manager, customer):
    rows = read_csv_rows(CUSTOMER_CSV) + [
        {"companyName": "Corner Cafe Two", "contactPerson": "Jamie", "phone": "6045550100",
         "email": "Owner@CornerCafe.com", "address": "12 Water St"},
        {"companyName": "", "contactPerson": "Nobody", "phone": "6045550100",
         "email": "x@y.com", "address": "Somewhere"},
    ]

    result = import_customers(db, manager, rows)

    assert result["success"] is False
    assert result["imported"] == 2
    assert result["skipped"] == 1
    assert result["errors"] == [
        {"row": 4, "reason": "Customer with email owner@cornercafe.com already exists (skipped)"},
        {"row": 5, "reason": "companyName is required"},
    ]
    emails = {c.email for c in db.query(Customer).all()}
    assert "ops@hillsideroastery.com" in emails


def test_import_customers_skips_duplicates_within_file(db, admin):
    rows = read_csv_rows(CUSTOMER_CSV + "Again Roastery,Robin,604-555-0200,ops@hillsideroastery.com,400 Hill Rd\n")

    result = import_customers(db, admin, rows)

    assert (result["imported"], result["skipped"]) == (2, 1)
    assert db.query(Customer).count() == 2


def test_import_machines(db, admin, customer, machines):
    rows = [
        {"serialNumber": "CRE-3001", "type": "Crescendo", "companyName": "corner cafe", "installationDate": "2024-05-01"},
        {"serialNumber": "esp-1001", "type": "Espresso", "companyName": "Corner Cafe"},
        {"serialNumber": "ESP-7", "type": "Toaster", "companyName": "Corner Cafe"},
        {"serialNumber": "GRD-9", "type": "Grinder", "companyName": "Unknown Co"},
    ]

    result = import_machines(db, admin, rows)

    assert result["imported"] == 1
    assert result["skipped"] == 1
    assert result["duplicates"] == ["esp-1001"]
    reasons = {e["row"]: e["reason"] for e in result["errors"]}
    assert reasons[3] == "Machine with serial number esp-1001 already exists (skipped)"
    assert reasons[4] == "type must be one of: Crescendo, Espresso, Grinder, Other"
    assert reasons[5] == 'Customer "Unknown Co" not found. Create customer first.'
    created = db.query(Machine).filter(Machine.serial_number == "CRE-3001").one()
    assert created.customer_id == customer.id
    assert created.installation_date.year == 2024


def test_imports_need_admin_or_management(db, call_admin):
    result = import_customers(db, call_admin, read_csv_rows(CUSTOMER_CSV))

    assert result == {"success": False, "imported": 0, "skipped": 0, "errors": [{"row": 0, "reason": "Unauthorized"}]}
