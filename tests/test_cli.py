import json

import pytest

from repairshop.tenancy import cli, policy
from repairshop.tenancy.outcomes import InstallReport, Outcome
from repairshop.tenancy.protocol import ProtocolSummary, ScenarioResult
from repairshop.tenancy.verifier import VerificationReport

SECURE = VerificationReport(
    True, True, True, ["✅ all good"],
    constraint_count=3, trigger_count=6, audit_mode="autonomous",
    constraints_present=list(policy.OWNERSHIP_CONSTRAINTS),
)
PARTIAL = VerificationReport(
    True, False, True, ["⚠️  INCOMPLETE: Only 2/3 ownership constraints active"],
    constraint_count=2, trigger_count=6, audit_mode="autonomous",
    constraints_present=["employee_must_have_shop", "kiosk_must_have_shop"],
)


@pytest.fixture
def wire(monkeypatch):
    """Replace the installer, verifier and harness the CLI builds with canned results."""
    calls = {"apply": 0, "remove": 0, "scenarios": 0}

    def _wire(verification, report=None, summary=None):
        class Installer:
            def __init__(self, engine):
                pass

            def apply_all(self):
                calls["apply"] += 1
                return report or InstallReport()

            def remove_all(self):
                calls["remove"] += 1
                return report or InstallReport()

        class Verifier:
            def __init__(self, engine):
                pass

            def verify(self):
                return verification

        class Harness:
            def __init__(self, session_factory):
                pass

            def run(self):
                calls["scenarios"] += 1
                return summary or ProtocolSummary([ScenarioResult("ok", True, "", "", "")])

        monkeypatch.setattr(cli, "InvariantInstaller", Installer)
        monkeypatch.setattr(cli, "InvariantVerifier", Verifier)
        monkeypatch.setattr(cli, "ProtocolHarness", Harness)
        return calls

    return _wire


def test_apply_secure_exits_zero(wire, capsys):
    wire(SECURE, InstallReport([Outcome.applied("immutability", "customers")]))
    assert cli.apply_main([], engine=object()) == 0
    out = capsys.readouterr().out
    assert "✅ SECURE" in out
    assert "REQUIRED before production use" not in out


def test_apply_partial_constraints_exits_nonzero_with_remediation(wire, capsys):
    report = InstallReport([
        Outcome.skipped("constraints", "owner_must_have_shop", "2 owner user(s) without shop_id", 2),
    ])
    wire(PARTIAL, report)
    assert cli.apply_main([], engine=object()) == 1
    out = capsys.readouterr().out
    assert "❌ Ownership constraints: INCOMPLETE (2/3)" in out
    assert "SECURITY GAP: owner_must_have_shop is not enforced" in out
    assert "Identify owner users without shop_id (2 found):" in out
    assert "SELECT id, username, email, role FROM users WHERE role = 'owner' AND shop_id IS NULL;" in out
    assert "security gap, not a minor issue" in out
    assert "employee_must_have_shop is not enforced" not in out


def test_apply_json(wire, capsys):
    wire(PARTIAL, InstallReport([Outcome.failed("auditing", "repairs", "boom")]))
    assert cli.apply_main(["--json"], engine=object()) == 1
    status = json.loads(capsys.readouterr().out)
    assert status["exit_code"] == 1
    assert status["verification"]["constraints_missing"] == ["owner_must_have_shop"]
    assert status["outcomes"][0]["status"] == "failed"


def test_remediation_lists_failed_steps():
    report = InstallReport([Outcome.failed("immutability", "repairs", "permission denied")])
    broken = VerificationReport(False, False, False, [])
    lines = cli.remediation_lines(broken, report)
    text = "\n".join(lines)
    assert "prevent_shop_id_change() is missing" in text
    assert "TENANT_AUDIT_MODE=inline" in text
    assert "no ownership constraints are installed" in text
    assert "✗ [immutability] repairs: failed (permission denied)" in text


def test_no_remediation_when_secure():
    assert cli.remediation_lines(SECURE) == []


def test_verify_runs_scenarios(wire, capsys):
    calls = wire(SECURE)
    assert cli.verify_main([], engine=object(), session_factory=object) == 0
    assert calls["scenarios"] == 1
    assert "Overall Status: ✅ SECURE" in capsys.readouterr().out


def test_verify_without_scenarios_writes_nothing(wire):
    calls = wire(SECURE)
    assert cli.verify_main(["--no-scenarios"], engine=object()) == 0
    assert calls["scenarios"] == 0


def test_verify_fails_on_failed_scenario(wire, capsys):
    failing = ProtocolSummary([
        ScenarioResult("Prevent shop_id modification via UPDATE", False, "Trigger did not prevent shop_id change",
                       "UPDATE rejected", "UPDATE succeeded"),
    ])
    wire(SECURE, summary=failing)
    assert cli.verify_main([], engine=object(), session_factory=object) == 1
    out = capsys.readouterr().out
    assert "Failed: 1 ❌" in out
    assert "Actual:   UPDATE succeeded" in out


def test_remove_requires_confirmation(wire):
    calls = wire(SECURE)
    assert cli.remove_main([], engine=object()) == 2
    assert calls["remove"] == 0


def test_remove_reports_failures(wire, capsys):
    calls = wire(
        VerificationReport(False, False, False, []),
        InstallReport([Outcome.failed("removal", "users", "lock timeout")]),
    )
    assert cli.remove_main(["--yes"], engine=object()) == 1
    assert calls["remove"] == 1
    assert "1 object(s) could not be removed" in capsys.readouterr().out


def test_remediation_for_missing_loopback_server():
    verification = VerificationReport(
        True, True, False, [], constraint_count=3, audit_mode="autonomous",
        constraints_present=list(policy.OWNERSHIP_CONSTRAINTS),
    )
    text = "\n".join(cli.remediation_lines(verification))
    assert "Loopback server" in text and "is missing" in text
    assert "audit_shop_id_attempt() is missing" not in text
