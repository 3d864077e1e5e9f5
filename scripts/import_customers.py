"""
Import customers (or machines) from a CSV file.

Customer columns: companyName, contactPerson, phone, email, address
Machine columns: serialNumber, type, companyName, location, notes, installationDate

Rows go through the same validation and duplicate checks as the /imports API.
The import runs as the given admin or management user.

Usage:
    python scripts/import_customers.py <csv_path> <admin_email> [--machines] [--dry-run]
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from fieldservice.db import SessionLocal
from fieldservice.models.models import User
from fieldservice.services.imports import (
    import_customers,
    import_machines,
    read_csv_rows,
    validate_customer_row,
    validate_machine_row,
)


def run(csv_path: str, admin_email: str, machines: bool = False, dry_run: bool = False) -> int:
    if not os.path.exists(csv_path):
        print(f"ERROR: File not found: {csv_path}")
        return 1

    with open(csv_path, newline="", encoding="utf-8-sig") as f:
        rows = read_csv_rows(f.read())
    kind = "machines" if machines else "customers"
    print(f"{'[DRY RUN] ' if dry_run else ''}Importing {len(rows)} {kind} rows from {csv_path}\n")

    if dry_run:
        validate = validate_machine_row if machines else validate_customer_row
        bad = 0
        for i, row in enumerate(rows):
            problems = validate(row)
            if problems:
                bad += 1
                print(f"Row {i + 2}: [ERROR] {'; '.join(problems)}")
        print(f"\n{len(rows) - bad} rows valid, {bad} rows invalid")
        return 1 if bad else 0

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == admin_email.lower()).first()
        if user is None:
            print(f"ERROR: No user with email {admin_email}")
            return 1
        result = (import_machines if machines else import_customers)(db, user, rows)
    finally:
        db.close()

    for err in result["errors"]:
        print(f"Row {err['row']}: [ERROR] {err['reason']}")
    print(f"\n{'=' * 60}")
    print("Import finished")
    print(f"  Imported: {result['imported']}")
    print(f"  Skipped:  {result['skipped']}")
    print(f"  Errors:   {len(result['errors'])}")
    print(f"{'=' * 60}")
    return 0 if result["success"] else 1


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if not a.startswith("-")]
    if len(args) < 2:
        print("Usage: python scripts/import_customers.py <csv_path> <admin_email> [--machines] [--dry-run]")
        sys.exit(1)

    sys.exit(run(
        args[0],
        args[1],
        machines="--machines" in sys.argv,
        dry_run="--dry-run" in sys.argv or "-d" in sys.argv,
    ))
