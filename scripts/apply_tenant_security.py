"""
Apply database security measures: shop_id immutability triggers, ownership constraints
(owner / employee / kiosk must have a shop) and audit triggers, then verify them.
Safe to re-run. Exit code 0 only when every control is active.

Run from project root:
  python scripts/apply_tenant_security.py
  python scripts/apply_tenant_security.py --json
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from repairshop.tenancy.cli import apply_main  # noqa: E402


if __name__ == "__main__":
    sys.exit(apply_main())
