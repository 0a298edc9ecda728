"""
Tenant isolation policy: names of every installed database object, the write-once
shop_id rule, and the PL/pgSQL sources generated from it.

The database enforces the rule through two row triggers per table:

  audit_shop_id_attempt_trigger   -> audit_shop_id_attempt()   (records the attempt)
  prevent_shop_id_change_trigger  -> prevent_shop_id_change()  (rejects it)

PostgreSQL fires triggers of the same event in name order, so the audit trigger
runs first and sees the attempted value before the statement is rejected.
"""
from __future__ import annotations

from typing import Any

TENANT_COLUMN = "shop_id"
PRINCIPAL_TABLE = "users"
AUDIT_TABLE = "activity_logs"

IMMUTABILITY_FUNCTION = "prevent_shop_id_change"
IMMUTABILITY_TRIGGER = "prevent_shop_id_change_trigger"
AUDIT_FUNCTION = "audit_shop_id_attempt"
AUDIT_TRIGGER = "audit_shop_id_attempt_trigger"
# Matches both trigger names above (informational count in the verifier)
TRIGGER_NAME_PATTERN = "%shop_id%"

# Violation tags carried by the rejection (RAISE ... USING CONSTRAINT) and in the audit row
IMMUTABLE_VIOLATION = "shop_id_immutable"
IMMUTABLE_MESSAGE = "shop_id cannot be modified"
CHECK_VIOLATION_SQLSTATE = "23514"

AUDIT_EVENT_TYPE = "security"
AUDIT_ACTION = "shop_id_change_blocked"
AUDIT_SEVERITY = "critical"

PRIVILEGED_ROLES = ("owner", "employee", "kiosk")

# Search space for immutability triggers; intersected with tables that exist and carry shop_id
CANDIDATE_TABLES = (
    "customers",
    "repairs",
    "users",
    "error_catalog_entries",
    "device_issues",
    "activity_logs",
    "spare_parts",
    "feedbacks",
    "email_templates",
    "email_log",
    "email_history",
    "device_types",
    "user_device_types",
    "user_brands",
    "model_lines",
    "user_models",
    "orders",
    "cost_estimates",
    "loaner_devices",
    "kiosk_devices",
    "kiosk_online_status",
    "password_reset_tokens",
)

# High-sensitivity tables that also get the audit trigger
AUDITED_TABLES = ("users", "customers", "repairs")


def constraint_name(role: str) -> str:
    return f"{role}_must_have_shop"


OWNERSHIP_CONSTRAINTS = tuple(constraint_name(r) for r in PRIVILEGED_ROLES)

# Tags classify_db_error() can return
VIOLATION_TAGS = (IMMUTABLE_VIOLATION,) + OWNERSHIP_CONSTRAINTS


class ShopIdImmutableError(ValueError):
    """A shop_id that is already set was about to change."""

    def __init__(self, old: Any, new: Any):
        self.old = old
        self.new = new
        super().__init__(f"Security violation: {IMMUTABLE_MESSAGE} (attempted change from {old} to {new})")


def shop_id_transition_allowed(old: Any, new: Any) -> bool:
    """NULL -> anything and value -> same value are allowed; value -> other value is not."""
    return old is None or new == old


def check_shop_id_transition(old: Any, new: Any) -> None:
    if not shop_id_transition_allowed(old, new):
        raise ShopIdImmutableError(old, new)


def classify_db_error(exc: BaseException) -> str | None:
    """Map a rejected statement to the violated rule.

    Accepts a SQLAlchemy DBAPIError (uses .orig) or a raw driver error. Prefers the
    diagnostic constraint name (psycopg2 .diag.constraint_name), falls back to the message.
    Returns None for errors this layer did not raise.
    """
    orig = getattr(exc, "orig", None) or exc
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None) if diag is not None else None
    if name in VIOLATION_TAGS:
        return name
    message = str(orig)
    if IMMUTABLE_MESSAGE in message:
        return IMMUTABLE_VIOLATION
    for tag in OWNERSHIP_CONSTRAINTS:
        if f'"{tag}"' in message or tag in message:
            return tag
    return None


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def qualified(schema: str, name: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(name)}"


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _search_path(schema: str) -> str:
    return f"SET search_path = pg_catalog, {quote_ident(schema)}"


def immutability_function_sql(schema: str) -> str:
    return f"""
        CREATE OR REPLACE FUNCTION {qualified(schema, IMMUTABILITY_FUNCTION)}()
        RETURNS TRIGGER
        {_search_path(schema)}
        AS $$
        BEGIN
            IF OLD.{TENANT_COLUMN} IS NOT NULL AND NEW.{TENANT_COLUMN} IS DISTINCT FROM OLD.{TENANT_COLUMN} THEN
                RAISE EXCEPTION 'Security violation: {IMMUTABLE_MESSAGE} (attempted change from % to %)',
                    OLD.{TENANT_COLUMN}, NEW.{TENANT_COLUMN}
                USING ERRCODE = '{CHECK_VIOLATION_SQLSTATE}',
                      CONSTRAINT = '{IMMUTABLE_VIOLATION}',
                      COLUMN = '{TENANT_COLUMN}',
                      TABLE = TG_TABLE_NAME,
                      SCHEMA = TG_TABLE_SCHEMA;
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql SECURITY DEFINER
    """


_AUDIT_COLUMNS = "(shop_id, event_type, action, entity_type, entity_id, description, details, severity, created_at)"


def _audit_remote_insert(schema: str) -> str:
    """format() call producing the INSERT sent over dblink; %L quotes every value (NULL stays NULL)."""
    statement = (
        f"INSERT INTO {qualified(schema, AUDIT_TABLE)} {_AUDIT_COLUMNS} "
        "VALUES (%L, %L, %L, %L, %L, %L, %L::jsonb, %L, NOW())"
    )
    return (
        f"format({quote_literal(statement)}, "
        f"OLD.{TENANT_COLUMN}, {quote_literal(AUDIT_EVENT_TYPE)}, {quote_literal(AUDIT_ACTION)}, "
        f"TG_TABLE_NAME, OLD.id, _description, _details::text, {quote_literal(AUDIT_SEVERITY)})"
    )


def audit_function_sql(schema: str, mode: str, server: str, dblink_schema: str = "public") -> str:
    """Audit function. mode 'autonomous' commits the row over dblink so it survives the
    rejection that follows; 'inline' inserts inside the rejected statement."""
    if mode == "autonomous":
        write = (
            f"PERFORM {qualified(dblink_schema, 'dblink_exec')}"
            f"({quote_literal(server)}, {_audit_remote_insert(schema)});"
        )
    else:
        write = (
            f"INSERT INTO {qualified(schema, AUDIT_TABLE)} {_AUDIT_COLUMNS} "
            f"VALUES (OLD.{TENANT_COLUMN}, {quote_literal(AUDIT_EVENT_TYPE)}, {quote_literal(AUDIT_ACTION)}, "
            f"TG_TABLE_NAME, OLD.id, _description, _details, {quote_literal(AUDIT_SEVERITY)}, NOW());"
        )
    return f"""
        CREATE OR REPLACE FUNCTION {qualified(schema, AUDIT_FUNCTION)}()
        RETURNS TRIGGER
        {_search_path(schema)}
        AS $$
        DECLARE
            _description text;
            _details jsonb;
        BEGIN
            IF OLD.{TENANT_COLUMN} IS NOT NULL AND NEW.{TENANT_COLUMN} IS DISTINCT FROM OLD.{TENANT_COLUMN} THEN
                _description := format('Blocked unauthorized shop_id change attempt on %s (id: %s)', TG_TABLE_NAME, OLD.id);
                _details := jsonb_build_object(
                    'old_shop_id', OLD.{TENANT_COLUMN},
                    'attempted_shop_id', NEW.{TENANT_COLUMN},
                    'table_name', TG_TABLE_NAME
                );
                {write}
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql SECURITY DEFINER
    """


def trigger_sql(schema: str, table: str, trigger: str, function: str) -> tuple[str, str]:
    """(drop, create) pair; running both is idempotent."""
    target = qualified(schema, table)
    drop = f"DROP TRIGGER IF EXISTS {quote_ident(trigger)} ON {target}"
    create = (
        f"CREATE TRIGGER {quote_ident(trigger)} BEFORE UPDATE ON {target} "
        f"FOR EACH ROW EXECUTE FUNCTION {qualified(schema, function)}()"
    )
    return drop, create


def ownership_constraint_sql(schema: str, role: str) -> str:
    """Existence-guarded ADD CONSTRAINT so re-runs do not fail on the duplicate name."""
    name = constraint_name(role)
    table = qualified(schema, PRINCIPAL_TABLE)
    return f"""
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1 FROM pg_constraint c
                JOIN pg_class t ON t.oid = c.conrelid
                JOIN pg_namespace n ON n.oid = t.relnamespace
                WHERE c.conname = {quote_literal(name)}
                  AND t.relname = {quote_literal(PRINCIPAL_TABLE)}
                  AND n.nspname = {quote_literal(schema)}
            ) THEN
                ALTER TABLE {table}
                ADD CONSTRAINT {quote_ident(name)}
                CHECK (role::text <> {quote_literal(role)} OR {TENANT_COLUMN} IS NOT NULL);
            END IF;
        END $$
    """


def remediation_sql(role: str) -> list[str]:
    """Operator steps for legacy rows that block a role's constraint."""
    return [
        f"SELECT id, username, email, role FROM {PRINCIPAL_TABLE} WHERE role = {quote_literal(role)} AND {TENANT_COLUMN} IS NULL;",
        f"UPDATE {PRINCIPAL_TABLE} SET {TENANT_COLUMN} = <shop_id> WHERE id = <user_id>;",
    ]


def loopback_server_sql(server: str, options: dict[str, str]) -> list[str]:
    """dblink_fdw server pointing back at this database (autonomous audit writes)."""
    opts = ", ".join(f"{k} {quote_literal(str(v))}" for k, v in options.items() if v not in (None, ""))
    create = f"CREATE SERVER {quote_ident(server)} FOREIGN DATA WRAPPER dblink_fdw"
    if opts:
        create += f" OPTIONS ({opts})"
    return [f"DROP SERVER IF EXISTS {quote_ident(server)} CASCADE", create]


def user_mapping_sql(server: str, user: str | None, password: str | None) -> str:
    opts = {"user": user, "password": password}
    rendered = ", ".join(f"{k} {quote_literal(v)}" for k, v in opts.items() if v)
    stmt = f"CREATE USER MAPPING FOR CURRENT_USER SERVER {quote_ident(server)}"
    return f"{stmt} OPTIONS ({rendered})" if rendered else stmt
