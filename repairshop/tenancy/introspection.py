"""Catalog queries (information_schema / pg_catalog). Read-only; each call uses its own connection."""
from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Engine

from repairshop.tenancy.policy import PRINCIPAL_TABLE, TENANT_COLUMN, qualified


class SchemaIntrospector:
    def __init__(self, engine: Engine, schema: str = "public"):
        self.engine = engine
        self.schema = schema

    def _scalar(self, sql: str, **params):
        with self.engine.connect() as conn:
            return conn.execute(text(sql), params).scalar()

    def table_names(self) -> set[str]:
        with self.engine.connect() as conn:
            r = conn.execute(text("""
                SELECT table_name FROM information_schema.tables
                WHERE table_schema = :schema AND table_type = 'BASE TABLE'
            """), {"schema": self.schema})
            return {row[0] for row in r}

    def tables_with_column(self, candidates, column: str = TENANT_COLUMN) -> list[str]:
        """Candidates (in their given order) that exist in the schema and carry `column`."""
        with self.engine.connect() as conn:
            r = conn.execute(text("""
                SELECT table_name FROM information_schema.columns
                WHERE table_schema = :schema AND column_name = :column
            """), {"schema": self.schema, "column": column})
            found = {row[0] for row in r}
        return [t for t in candidates if t in found]

    def function_exists(self, name: str) -> bool:
        count = self._scalar("""
            SELECT COUNT(*) FROM pg_proc p
            JOIN pg_namespace n ON n.oid = p.pronamespace
            WHERE p.proname = :name AND n.nspname = :schema
        """, name=name, schema=self.schema)
        return int(count or 0) > 0

    def function_source(self, name: str) -> str | None:
        return self._scalar("""
            SELECT p.prosrc FROM pg_proc p
            JOIN pg_namespace n ON n.oid = p.pronamespace
            WHERE p.proname = :name AND n.nspname = :schema
            LIMIT 1
        """, name=name, schema=self.schema)

    def existing_constraints(self, names, table: str = PRINCIPAL_TABLE) -> list[str]:
        """Which of `names` exist on `table`, in the order given."""
        with self.engine.connect() as conn:
            r = conn.execute(text("""
                SELECT c.conname FROM pg_constraint c
                JOIN pg_class t ON t.oid = c.conrelid
                JOIN pg_namespace n ON n.oid = t.relnamespace
                WHERE c.conname = ANY(:names) AND t.relname = :table AND n.nspname = :schema
            """), {"names": list(names), "table": table, "schema": self.schema})
            found = {row[0] for row in r}
        return [n for n in names if n in found]

    def count_triggers(self, pattern: str) -> int:
        count = self._scalar("""
            SELECT COUNT(*) FROM pg_trigger tg
            JOIN pg_class t ON t.oid = tg.tgrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            WHERE NOT tg.tgisinternal AND tg.tgname LIKE :pattern AND n.nspname = :schema
        """, pattern=pattern, schema=self.schema)
        return int(count or 0)

    def trigger_names(self, table: str) -> list[str]:
        """User triggers on `table` in firing order (PostgreSQL fires same-event triggers by name)."""
        with self.engine.connect() as conn:
            r = conn.execute(text("""
                SELECT tg.tgname FROM pg_trigger tg
                JOIN pg_class t ON t.oid = tg.tgrelid
                JOIN pg_namespace n ON n.oid = t.relnamespace
                WHERE NOT tg.tgisinternal AND t.relname = :table AND n.nspname = :schema
                ORDER BY tg.tgname
            """), {"schema": self.schema, "table": table})
            return [row[0] for row in r]

    def count_null_tenant(self, role: str) -> int:
        """Principals with `role` and no shop_id (rows that would violate the role's constraint)."""
        with self.engine.connect() as conn:
            count = conn.execute(
                text(f"SELECT COUNT(*) FROM {qualified(self.schema, PRINCIPAL_TABLE)} WHERE role::text = :role AND {TENANT_COLUMN} IS NULL"),
                {"role": role},
            ).scalar()
        return int(count or 0)

    def extension_schema(self, name: str) -> str | None:
        return self._scalar("""
            SELECT n.nspname FROM pg_extension e
            JOIN pg_namespace n ON n.oid = e.extnamespace
            WHERE e.extname = :name
        """, name=name)

    def foreign_server_exists(self, name: str) -> bool:
        count = self._scalar("SELECT COUNT(*) FROM pg_foreign_server WHERE srvname = :name", name=name)
        return int(count or 0) > 0
