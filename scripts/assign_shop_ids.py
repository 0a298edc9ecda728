"""
List privileged users (owner / employee / kiosk) without a shop_id, or assign one.
Such rows keep the matching ownership constraint from being installed.

Usage (from project root):
  python scripts/assign_shop_ids.py                      # list all
  python scripts/assign_shop_ids.py --role owner         # list owners only
  python scripts/assign_shop_ids.py --assign 12 3        # user 12 -> shop 3

Assignment is only possible while the user has no shop (shop_id is write-once).
"""
import os
import sys
import argparse

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from repairshop.database import SessionLocal  # noqa: E402
from repairshop.services.principals import assign_shop, find_unassigned  # noqa: E402
from repairshop.tenancy.policy import PRIVILEGED_ROLES, ShopIdImmutableError  # noqa: E402


def main():
    parser = argparse.ArgumentParser(description="Find or fix privileged users without shop_id")
    parser.add_argument("--role", choices=PRIVILEGED_ROLES, default=None, help="Only this role")
    parser.add_argument("--assign", nargs=2, type=int, metavar=("USER_ID", "SHOP_ID"), help="Assign a shop")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        if args.assign:
            user_id, shop_id = args.assign
            try:
                user = assign_shop(db, user_id, shop_id)
            except (LookupError, ShopIdImmutableError) as e:
                print(f"Error: {e}")
                return 1
            db.commit()
            print(f"Assigned shop {shop_id} to user {user.id} ({user.email}, role={user.role.value})")
            return 0

        users = find_unassigned(db, args.role)
        if not users:
            print("No privileged users without shop_id.")
            return 0
        for user in users:
            print(f"  id={user.id} role={user.role.value} email={user.email} username={user.username or '—'}")
        print(f"{len(users)} user(s) need a shop_id. Assign with: python scripts/assign_shop_ids.py --assign USER_ID SHOP_ID")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main() or 0)
