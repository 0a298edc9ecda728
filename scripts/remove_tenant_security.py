"""
Remove every tenant isolation trigger, constraint and trigger function (rollback / testing).
Run from project root: python scripts/remove_tenant_security.py --yes
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from repairshop.tenancy.cli import remove_main  # noqa: E402


if __name__ == "__main__":
    sys.exit(remove_main())
