"""
Invariant installer: shop_id immutability triggers, ownership check constraints and
audit triggers. Every statement group runs in its own transaction so one table's
failure is logged and skipped without hiding the others; only the shared trigger
function of a category is fatal to that category.

All DDL is idempotent (CREATE OR REPLACE, DROP ... IF EXISTS before CREATE,
existence-guarded ADD CONSTRAINT), so the installer is safe to re-run.
"""
from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from repairshop.config import AUDIT_MODE_AUTONOMOUS, Settings, get_settings
from repairshop.tenancy import policy
from repairshop.tenancy.introspection import SchemaIntrospector
from repairshop.tenancy.outcomes import AUDITING, CONSTRAINTS, IMMUTABILITY, REMOVAL, InstallReport, Outcome

logger = logging.getLogger(__name__)

DISCOVERY_TARGET = "table discovery"


class InstallationError(RuntimeError):
    """A category's shared trigger function (or its prerequisites) could not be created."""

    def __init__(self, category: str, message: str):
        self.category = category
        super().__init__(f"{category}: {message}")


def _error_text(e: Exception) -> str:
    """First line of the driver message (SQLAlchemy appends SQL and a docs link)."""
    msg = str(getattr(e, "orig", None) or e).strip()
    return msg.splitlines()[0] if msg else e.__class__.__name__


class InvariantInstaller:
    def __init__(
        self,
        engine: Engine,
        introspector: SchemaIntrospector | None = None,
        settings: Settings | None = None,
    ):
        self.engine = engine
        self.settings = settings or get_settings()
        self.schema = self.settings.tenant_schema
        self.introspector = introspector or SchemaIntrospector(engine, self.schema)

    def _execute(self, *statements: str) -> None:
        with self.engine.begin() as conn:
            for stmt in statements:
                conn.execute(text(stmt))

    def _discover(self, report: InstallReport, category: str, lookup, *args):
        """Catalog lookup for a category; a failure is recorded and None returned."""
        try:
            return lookup(*args)
        except SQLAlchemyError as e:
            logger.error("Table discovery failed (%s): %s", category, _error_text(e))
            report.add(Outcome.failed(category, DISCOVERY_TARGET, _error_text(e)))
            return None

    # --- Immutability ---

    def apply_immutability(self) -> InstallReport:
        """Shared write-once function + one BEFORE UPDATE trigger per protected table.
        Raises InstallationError only if the shared function cannot be created."""
        report = InstallReport()
        logger.info("Creating shop_id immutability triggers")
        try:
            self._execute(policy.immutability_function_sql(self.schema))
        except SQLAlchemyError as e:
            logger.error("Could not create %s(): %s", policy.IMMUTABILITY_FUNCTION, _error_text(e))
            raise InstallationError(IMMUTABILITY, _error_text(e)) from e
        report.add(Outcome.applied(IMMUTABILITY, f"{policy.IMMUTABILITY_FUNCTION}()"))

        tables = self._discover(report, IMMUTABILITY, self.introspector.tables_with_column, policy.CANDIDATE_TABLES)
        if tables is None:
            return report
        logger.info("Found %d tables with %s to protect", len(tables), policy.TENANT_COLUMN)
        for table in tables:
            drop, create = policy.trigger_sql(
                self.schema, table, policy.IMMUTABILITY_TRIGGER, policy.IMMUTABILITY_FUNCTION
            )
            try:
                self._execute(drop, create)
            except SQLAlchemyError as e:
                logger.warning("Skipped %s: %s", table, _error_text(e))
                report.add(Outcome.failed(IMMUTABILITY, table, _error_text(e)))
                continue
            logger.info("Protected %s", table)
            report.add(Outcome.applied(IMMUTABILITY, table))
        return report

    # --- Ownership constraints ---

    def apply_ownership_constraints(self) -> InstallReport:
        """One named CHECK per privileged role. A role whose legacy rows already violate the
        check is skipped (with the violating count) instead of blocking the other roles."""
        report = InstallReport()
        logger.info("Creating ownership constraints")
        for role in policy.PRIVILEGED_ROLES:
            name = policy.constraint_name(role)
            try:
                violations = self.introspector.count_null_tenant(role)
            except SQLAlchemyError as e:
                logger.warning("Could not check %s rows for %s: %s", role, name, _error_text(e))
                report.add(Outcome.failed(CONSTRAINTS, name, _error_text(e)))
                continue
            if violations > 0:
                logger.warning(
                    "Found %d %s user(s) without %s - skipping %s", violations, role, policy.TENANT_COLUMN, name
                )
                report.add(Outcome.skipped(
                    CONSTRAINTS, name, f"{violations} {role} user(s) without {policy.TENANT_COLUMN}", violations
                ))
                continue
            try:
                present = name in self.introspector.existing_constraints([name])
                self._execute(policy.ownership_constraint_sql(self.schema, role))
            except SQLAlchemyError as e:
                logger.warning("Could not enforce %s: %s", name, _error_text(e))
                report.add(Outcome.failed(CONSTRAINTS, name, _error_text(e)))
                continue
            if present:
                report.add(Outcome.skipped(CONSTRAINTS, name, "already present"))
            else:
                logger.info("%s shop_id requirement enforced (%s)", role.capitalize(), name)
                report.add(Outcome.applied(CONSTRAINTS, name))
        return report

    # --- Auditing ---

    def _loopback_statements(self) -> list[str]:
        url = make_url(self.settings.database_url)
        server = self.settings.tenant_audit_server
        options = {
            "host": url.host or "",
            "port": str(url.port) if url.port else "",
            "dbname": url.database or "",
        }
        return policy.loopback_server_sql(server, options) + [
            policy.user_mapping_sql(server, url.username, url.password)
        ]

    def _prepare_autonomous_audit(self) -> str:
        """dblink extension + loopback server + user mapping; returns dblink's schema."""
        self._execute("CREATE EXTENSION IF NOT EXISTS dblink")
        self._execute(*self._loopback_statements())
        return self.introspector.extension_schema("dblink") or self.schema

    def apply_auditing(self) -> InstallReport:
        """Shared audit function + BEFORE UPDATE trigger on the high-sensitivity tables.
        The trigger name sorts before the immutability trigger, so it fires first."""
        report = InstallReport()
        mode = self.settings.tenant_audit_mode
        logger.info("Creating audit triggers (mode=%s)", mode)
        try:
            dblink_schema = self.schema
            if mode == AUDIT_MODE_AUTONOMOUS:
                dblink_schema = self._prepare_autonomous_audit()
                report.add(Outcome.applied(AUDITING, self.settings.tenant_audit_server, "dblink loopback"))
            self._execute(policy.audit_function_sql(
                self.schema, mode, self.settings.tenant_audit_server, dblink_schema
            ))
        except SQLAlchemyError as e:
            logger.error("Could not create %s(): %s", policy.AUDIT_FUNCTION, _error_text(e))
            raise InstallationError(AUDITING, _error_text(e)) from e
        report.add(Outcome.applied(AUDITING, f"{policy.AUDIT_FUNCTION}()", mode))

        tables = self._discover(report, AUDITING, self.introspector.tables_with_column, policy.AUDITED_TABLES)
        if tables is None:
            return report
        for table in policy.AUDITED_TABLES:
            if table not in tables:
                report.add(Outcome.skipped(AUDITING, table, f"table missing or has no {policy.TENANT_COLUMN}"))
                continue
            drop, create = policy.trigger_sql(self.schema, table, policy.AUDIT_TRIGGER, policy.AUDIT_FUNCTION)
            try:
                self._execute(drop, create)
            except SQLAlchemyError as e:
                logger.warning("Skipped audit trigger on %s: %s", table, _error_text(e))
                report.add(Outcome.failed(AUDITING, table, _error_text(e)))
                continue
            logger.info("Audit logging enabled for %s", table)
            report.add(Outcome.applied(AUDITING, table))
        return report

    # --- All / remove ---

    def apply_all(self) -> InstallReport:
        """Immutability, constraints, auditing. A fatal error in one category is recorded
        as a failed outcome and the remaining categories still run."""
        report = InstallReport()
        logger.info("Applying database security measures")
        for category, step in (
            (IMMUTABILITY, self.apply_immutability),
            (CONSTRAINTS, self.apply_ownership_constraints),
            (AUDITING, self.apply_auditing),
        ):
            try:
                report.extend(step())
            except InstallationError as e:
                report.add(Outcome.failed(category, "shared trigger function", str(e)))
        return report

    def remove_all(self) -> InstallReport:
        """Drop every trigger, constraint and function installed above. Safe on a partially
        installed or already clean database."""
        report = InstallReport()
        logger.info("Removing database security measures")
        existing = self._discover(report, REMOVAL, self.introspector.table_names)
        statements: list[tuple[str, list[str]]] = []
        # Without discovery the triggers still go with DROP FUNCTION ... CASCADE below
        for table in policy.CANDIDATE_TABLES:
            if existing is None or table not in existing:
                continue
            target = policy.qualified(self.schema, table)
            statements.append((table, [
                f"DROP TRIGGER IF EXISTS {policy.quote_ident(policy.IMMUTABILITY_TRIGGER)} ON {target}",
                f"DROP TRIGGER IF EXISTS {policy.quote_ident(policy.AUDIT_TRIGGER)} ON {target}",
            ]))
        if existing is None or policy.PRINCIPAL_TABLE in existing:
            users = policy.qualified(self.schema, policy.PRINCIPAL_TABLE)
            for name in policy.OWNERSHIP_CONSTRAINTS:
                statements.append((name, [f"ALTER TABLE {users} DROP CONSTRAINT IF EXISTS {policy.quote_ident(name)}"]))
        for function in (policy.IMMUTABILITY_FUNCTION, policy.AUDIT_FUNCTION):
            statements.append((f"{function}()", [
                f"DROP FUNCTION IF EXISTS {policy.qualified(self.schema, function)}() CASCADE"
            ]))
        server = self.settings.tenant_audit_server
        # Dropping the server also drops its user mappings
        statements.append((server, [f"DROP SERVER IF EXISTS {policy.quote_ident(server)} CASCADE"]))

        for target, stmts in statements:
            try:
                self._execute(*stmts)
            except SQLAlchemyError as e:
                logger.warning("Could not remove %s: %s", target, _error_text(e))
                report.add(Outcome.failed(REMOVAL, target, _error_text(e)))
                continue
            report.add(Outcome.applied(REMOVAL, target))
        return report
