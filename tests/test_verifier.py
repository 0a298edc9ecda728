import pytest

from repairshop.config import Settings
from repairshop.tenancy import policy
from repairshop.tenancy.verifier import InvariantVerifier

from conftest import FakeIntrospector

BOTH_FUNCTIONS = (policy.IMMUTABILITY_FUNCTION, policy.AUDIT_FUNCTION)


def verify(**kwargs):
    return InvariantVerifier(introspector=FakeIntrospector(**kwargs)).verify()


def test_requires_engine_or_introspector():
    with pytest.raises(ValueError):
        InvariantVerifier()


def test_fully_installed_is_secure():
    report = verify(
        functions=BOTH_FUNCTIONS,
        constraints=policy.OWNERSHIP_CONSTRAINTS,
        triggers=7,
        audit_source="PERFORM dblink_exec(...)",
        servers={"tenant_audit_loopback"},
    )
    assert report.secure
    assert report.constraint_count == 3
    assert report.trigger_count == 7
    assert report.audit_mode == "autonomous"
    assert "✅ All ownership constraints active (3/3)" in report.details
    assert not any(d.startswith("⚠️") for d in report.details)


def test_nothing_installed():
    report = verify()
    assert not report.triggers_active
    assert not report.constraints_active
    assert not report.auditing_active
    assert report.audit_mode is None
    assert "❌ No ownership constraints active (found 0/3)" in report.details
    assert report.constraints_missing == list(policy.OWNERSHIP_CONSTRAINTS)


def test_partial_constraints_are_inactive():
    report = verify(
        functions=BOTH_FUNCTIONS,
        constraints=("employee_must_have_shop", "kiosk_must_have_shop"),
        audit_source="INSERT INTO activity_logs ...",
    )
    assert report.triggers_active and report.auditing_active
    assert report.constraints_active is False
    assert report.constraints_partial
    assert not report.secure
    assert report.constraints_missing == ["owner_must_have_shop"]
    assert "⚠️  INCOMPLETE: Only 2/3 ownership constraints active" in report.details


def test_inline_audit_mode_is_reported():
    report = verify(functions=BOTH_FUNCTIONS, constraints=policy.OWNERSHIP_CONSTRAINTS, audit_source="INSERT ...")
    assert report.audit_mode == "inline"
    assert report.secure


def test_missing_loopback_server_fails_closed():
    report = verify(
        functions=BOTH_FUNCTIONS,
        constraints=policy.OWNERSHIP_CONSTRAINTS,
        audit_source="dblink_exec",
        servers=(),
    )
    assert report.audit_mode == "autonomous"
    assert not report.auditing_active
    assert not report.secure
    assert any("Loopback server tenant_audit_loopback not found" in d for d in report.details)


def test_catalog_error_turns_every_flag_off():
    report = verify(functions=BOTH_FUNCTIONS, error=RuntimeError("connection refused"))
    assert (report.triggers_active, report.constraints_active, report.auditing_active) == (False, False, False)
    assert report.details[-1] == "❌ Error verifying security: connection refused"


def test_loopback_server_name_comes_from_settings():
    settings = Settings(tenant_audit_server="audit_lb")
    introspector = FakeIntrospector(
        functions=BOTH_FUNCTIONS,
        constraints=policy.OWNERSHIP_CONSTRAINTS,
        audit_source="dblink_exec",
        servers={"audit_lb"},
    )
    report = InvariantVerifier(introspector=introspector, settings=settings).verify()
    assert report.secure
