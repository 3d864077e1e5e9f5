"""
Rebuild call admin ticket stats from the tickets table.

The stats are maintained incrementally and on a best-effort basis; run this
after an aggregate update failure was logged or after editing tickets by hand.

Usage:
    python scripts/recalculate_aggregates.py            # every call admin
    python scripts/recalculate_aggregates.py <user_id>  # one call admin
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from fieldservice.db import SessionLocal
from fieldservice.models.models import User
from fieldservice.services.aggregates import recalculate_call_admin_aggregates
from fieldservice.services.permissions import CALL_ADMIN


def main(user_ids=None) -> int:
    db = SessionLocal()
    failures = 0
    try:
        if not user_ids:
            user_ids = [u.id for u in db.query(User).filter(User.role == CALL_ADMIN).all()]
        print(f"Recalculating stats for {len(user_ids)} call admin(s)")
        for user_id in user_ids:
            result = recalculate_call_admin_aggregates(db, user_id)
            if result["success"]:
                print(f"  [OK] {user_id}")
            else:
                failures += 1
                print(f"  [ERROR] {user_id}: {result['error']}")
    finally:
        db.close()
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
