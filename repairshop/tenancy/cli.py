"""
Operator entry points for the tenant isolation controls.

  apply   install every control, verify, exit 0 only if all categories are active
  verify  read-only verification plus the protocol scenarios
  remove  uninstall (rollback / test teardown)

Exit code 0 means fully enforced invariants; anything else comes with remediation steps.
"""
from __future__ import annotations

import argparse
import logging

from repairshop.config import AUDIT_MODE_AUTONOMOUS, get_settings
from repairshop.database import SessionLocal, engine as default_engine
from repairshop.schemas.tenant_security import (
    OutcomeView,
    ScenarioResultView,
    SecurityStatusResponse,
    VerificationReportResponse,
)
from repairshop.services.activity_log import describe, recent_blocked_attempts
from repairshop.tenancy import policy
from repairshop.tenancy.installer import InvariantInstaller
from repairshop.tenancy.outcomes import IMMUTABILITY, InstallReport
from repairshop.tenancy.protocol import ProtocolHarness, ProtocolSummary
from repairshop.tenancy.verifier import InvariantVerifier, VerificationReport

RULE = "─" * 67
DOUBLE = "═" * 67


def configure_logging() -> None:
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def banner(title: str, subtitle: str = "") -> list[str]:
    lines = ["╔" + "═" * 65 + "╗", f"║     {title:<60}║"]
    if subtitle:
        lines.append(f"║     {subtitle:<60}║")
    lines.append("╚" + "═" * 65 + "╝")
    return lines


def summary_lines(verification: VerificationReport, report: InstallReport | None = None) -> list[str]:
    expected = len(policy.OWNERSHIP_CONSTRAINTS)
    lines = ["Security Deployment Summary:", RULE]
    if verification.triggers_active:
        protected = ""
        if report is not None:
            tables = [o for o in report.applied if o.category == IMMUTABILITY and not o.target.endswith("()")]
            protected = f" ({len(tables)} tables protected)"
        lines.append(f"✅ Shop ID immutability: ACTIVE{protected}")
    else:
        lines.append("❌ Shop ID immutability: FAILED")

    lines.append("✅ Audit logging: ACTIVE" if verification.auditing_active else "❌ Audit logging: FAILED")

    if verification.constraints_active:
        lines.append(f"✅ Ownership constraints: FULLY ENFORCED ({expected}/{expected})")
    else:
        lines.append(f"❌ Ownership constraints: INCOMPLETE ({verification.constraint_count}/{expected})")
        for name in verification.constraints_missing:
            lines.append(f"   ❌ SECURITY GAP: {name} is not enforced")
    lines.append(RULE)
    if verification.secure:
        lines.append("✅ SECURE - all tenant isolation controls active")
    else:
        lines.append("❌ INCOMPLETE - tenant isolation controls are not fully enforced")
    return lines


def remediation_lines(verification: VerificationReport, report: InstallReport | None = None) -> list[str]:
    if verification.secure:
        return []
    lines = ["", "❌ REQUIRED before production use:"]
    step = 1

    if not verification.triggers_active:
        lines.append(f"   {step}. {policy.IMMUTABILITY_FUNCTION}() is missing. Check the log above for the")
        lines.append("      database error (the installing role needs CREATE on the schema) and rerun apply.")
        step += 1

    if not verification.auditing_active and verification.audit_mode == AUDIT_MODE_AUTONOMOUS:
        lines.append(f"   {step}. Loopback server {get_settings().tenant_audit_server} is missing, so the audit")
        lines.append("      trigger cannot write. Rerun apply (it recreates the server and user mapping).")
        step += 1
    elif not verification.auditing_active:
        lines.append(f"   {step}. {policy.AUDIT_FUNCTION}() is missing. In autonomous mode the dblink extension")
        lines.append("      (postgresql-contrib) must be installable; otherwise set TENANT_AUDIT_MODE=inline.")
        step += 1

    if not verification.constraints_active:
        deferred = {o.target: o.violations for o in report.deferred_constraints} if report else {}
        for role in policy.PRIVILEGED_ROLES:
            name = policy.constraint_name(role)
            if name not in verification.constraints_missing:
                continue
            count = deferred.get(name)
            found = f" ({count} found)" if count else ""
            select, update = policy.remediation_sql(role)
            lines.append(f"   {step}. Identify {role} users without {policy.TENANT_COLUMN}{found}:")
            lines.append(f"      {select}")
            lines.append(f"      Assign {policy.TENANT_COLUMN} to each, then rerun apply to install {name}:")
            lines.append(f"      {update}")
            step += 1
        lines.append("")
        if verification.constraints_partial:
            lines.append(
                f"⚠️  WARNING: partial ownership coverage ({verification.constraint_count}/"
                f"{len(policy.OWNERSHIP_CONSTRAINTS)}) is a security gap, not a minor issue. It allows:"
            )
        else:
            lines.append("⚠️  WARNING: no ownership constraints are installed. This allows:")
        lines.append("   • Privilege escalation via a tenant role without a shop")
        lines.append("   • Cross-tenant data access")
        lines.append("   • Tenant isolation violations")

    if report is not None and report.failed:
        lines.append("")
        lines.append("Failed installation steps:")
        lines.extend(f"   {o.line()}" for o in report.failed)

    lines.append("")
    lines.append("Rerun scripts/apply_tenant_security.py after fixing; it must pass before production use.")
    return lines


def scenario_lines(summary: ProtocolSummary) -> list[str]:
    lines = [r.line() for r in summary.results]
    lines += [
        "",
        DOUBLE,
        "Test Summary:",
        RULE,
        f"Total Tests: {len(summary.results)}",
        f"Passed: {summary.passed} ✅",
        f"Failed: {summary.failed} ❌",
        RULE,
    ]
    if summary.failures:
        lines.append("Failed tests:")
        for r in summary.failures:
            lines.append(f"  • {r.name}")
            lines.append(f"    Expected: {r.expected}")
            lines.append(f"    Actual:   {r.actual}")
            lines.append(f"    {r.message}")
    return lines


def _status_json(
    verification: VerificationReport,
    exit_code: int,
    report: InstallReport | None = None,
    summary: ProtocolSummary | None = None,
) -> str:
    status = SecurityStatusResponse(
        verification=VerificationReportResponse.from_report(verification),
        outcomes=[OutcomeView(**vars(o)) for o in (report.outcomes if report else [])],
        scenarios=[ScenarioResultView(**vars(r)) for r in (summary.results if summary else [])],
        passed=summary.passed if summary else 0,
        failed=summary.failed if summary else 0,
        exit_code=exit_code,
    )
    return status.model_dump_json(indent=2)


def apply_main(argv=None, engine=None) -> int:
    parser = argparse.ArgumentParser(description="Apply shop_id immutability, ownership and audit controls")
    parser.add_argument("--json", action="store_true", help="Print a machine-readable status instead of text")
    args = parser.parse_args(argv)
    configure_logging()
    engine = engine or default_engine

    if not args.json:
        print("\n".join(banner("Database Security Configuration Tool", "Applying shop_id immutability and audit controls")))
        print()
    report = InvariantInstaller(engine).apply_all()
    verification = InvariantVerifier(engine).verify()
    exit_code = 0 if verification.secure else 1

    if args.json:
        print(_status_json(verification, exit_code, report=report))
        return exit_code

    print("Installation steps:")
    for outcome in report.outcomes:
        print(f"  {outcome.line()}")
    print()
    print("📊 Security Status Report:")
    print(RULE)
    for detail in verification.details:
        print(detail)
    print(RULE)
    print()
    print(DOUBLE)
    print("\n".join(summary_lines(verification, report)))
    for line in remediation_lines(verification, report):
        print(line)
    print(DOUBLE)
    return exit_code


def verify_main(argv=None, engine=None, session_factory=None) -> int:
    parser = argparse.ArgumentParser(description="Verify tenant isolation controls and run the protocol scenarios")
    parser.add_argument("--no-scenarios", action="store_true", help="Catalog checks only (no test rows are written)")
    parser.add_argument("--recent", type=int, default=0, help="Also list the N most recent blocked shop_id changes")
    parser.add_argument("--json", action="store_true", help="Print a machine-readable status instead of text")
    args = parser.parse_args(argv)
    configure_logging()
    engine = engine or default_engine
    session_factory = session_factory or SessionLocal

    verification = InvariantVerifier(engine).verify()
    summary = None
    if not args.no_scenarios:
        summary = ProtocolHarness(session_factory).run()
    exit_code = 0 if verification.secure and (summary is None or summary.exit_code == 0) else 1

    if args.json:
        print(_status_json(verification, exit_code, summary=summary))
        return exit_code

    print("\n".join(banner("Security Features Test Suite")))
    print()
    print("📊 Security Status:")
    for detail in verification.details:
        print(detail)
    print()
    print("\n".join(summary_lines(verification)))
    if summary is not None:
        print()
        print("📋 Protocol scenarios:")
        print("\n".join(scenario_lines(summary)))
    if args.recent > 0:
        db = session_factory()
        try:
            entries = recent_blocked_attempts(db, args.recent)
        finally:
            db.close()
        print()
        print(f"🔎 Recent blocked shop_id changes ({len(entries)}):")
        for entry in entries:
            print(f"  {describe(entry)}")
    for line in remediation_lines(verification):
        print(line)
    print()
    print(f"Overall Status: {'✅ SECURE' if exit_code == 0 else '⚠️  INCOMPLETE'}")
    return exit_code


def remove_main(argv=None, engine=None) -> int:
    parser = argparse.ArgumentParser(description="Remove every tenant isolation trigger, constraint and function")
    parser.add_argument("--yes", action="store_true", help="Confirm removal (tenant isolation will be disabled)")
    args = parser.parse_args(argv)
    configure_logging()
    if not args.yes:
        print("Refusing to remove tenant isolation controls without --yes.")
        return 2
    engine = engine or default_engine

    print("🔓 Removing database security measures...")
    report = InvariantInstaller(engine).remove_all()
    for outcome in report.outcomes:
        print(f"  {outcome.line()}")
    verification = InvariantVerifier(engine).verify()
    print()
    for detail in verification.details:
        print(detail)
    if report.failed:
        print(f"❌ {len(report.failed)} object(s) could not be removed")
        return 1
    print("✅ All security measures removed")
    return 0
