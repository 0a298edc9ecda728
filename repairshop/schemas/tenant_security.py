"""Tenant isolation status: verification report, install outcomes, protocol results."""
from pydantic import BaseModel


class VerificationReportResponse(BaseModel):
    secure: bool
    triggers_active: bool
    constraints_active: bool
    auditing_active: bool
    constraint_count: int
    constraints_missing: list[str]
    trigger_count: int
    audit_mode: str | None = None  # autonomous | inline, None when the audit function is missing
    details: list[str]

    @classmethod
    def from_report(cls, report) -> "VerificationReportResponse":
        return cls(
            secure=report.secure,
            triggers_active=report.triggers_active,
            constraints_active=report.constraints_active,
            auditing_active=report.auditing_active,
            constraint_count=report.constraint_count,
            constraints_missing=report.constraints_missing,
            trigger_count=report.trigger_count,
            audit_mode=report.audit_mode,
            details=list(report.details),
        )


class OutcomeView(BaseModel):
    category: str
    target: str
    status: str  # applied, skipped, failed
    reason: str = ""
    violations: int = 0


class ScenarioResultView(BaseModel):
    name: str
    passed: bool
    message: str
    expected: str
    actual: str


class SecurityStatusResponse(BaseModel):
    """Machine-readable output of the CLI (--json)."""
    verification: VerificationReportResponse
    outcomes: list[OutcomeView] = []
    scenarios: list[ScenarioResultView] = []
    passed: int = 0
    failed: int = 0
    exit_code: int
