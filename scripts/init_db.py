"""
Create the tables from repairshop.models (shops, users, customers, repairs, activity_logs)
if they do not exist. Existing tables are left untouched.
Run from project root: python scripts/init_db.py
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy import inspect  # noqa: E402
from repairshop.database import Base, engine  # noqa: E402
from repairshop import models  # noqa: F401,E402


def main():
    existing = set(inspect(engine).get_table_names())
    Base.metadata.create_all(bind=engine)
    for table in Base.metadata.sorted_tables:
        print(f"  {'skip (exists)' if table.name in existing else 'created'}: {table.name}")
    print("Done. Next: python scripts/apply_tenant_security.py")


if __name__ == "__main__":
    main()
