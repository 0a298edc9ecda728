"""
Verify tenant isolation controls (catalog checks) and run the protocol scenarios, which
insert, update and delete disposable shops, customers and users.

Run from project root:
  python scripts/verify_tenant_security.py
  python scripts/verify_tenant_security.py --no-scenarios   # read-only, safe on production
  python scripts/verify_tenant_security.py --recent 20      # also list recent blocked attempts
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from repairshop.tenancy.cli import verify_main  # noqa: E402


if __name__ == "__main__":
    sys.exit(verify_main())
