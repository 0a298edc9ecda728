"""Per-object installation results: applied / skipped (with reason) / failed."""
from __future__ import annotations

from dataclasses import dataclass, field

APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"

# Categories
IMMUTABILITY = "immutability"
CONSTRAINTS = "constraints"
AUDITING = "auditing"
REMOVAL = "removal"


@dataclass(frozen=True)
class Outcome:
    category: str  # one of the categories above
    target: str  # table, constraint or function name
    status: str
    reason: str = ""
    # Legacy rows blocking an ownership constraint (only for skipped constraints)
    violations: int = 0

    @classmethod
    def applied(cls, category: str, target: str, reason: str = "") -> "Outcome":
        return cls(category, target, APPLIED, reason)

    @classmethod
    def skipped(cls, category: str, target: str, reason: str, violations: int = 0) -> "Outcome":
        return cls(category, target, SKIPPED, reason, violations)

    @classmethod
    def failed(cls, category: str, target: str, reason: str) -> "Outcome":
        return cls(category, target, FAILED, reason)

    @property
    def ok(self) -> bool:
        return self.status != FAILED

    def line(self) -> str:
        mark = {APPLIED: "✓", SKIPPED: "⚠", FAILED: "✗"}.get(self.status, "?")
        text = f"{mark} [{self.category}] {self.target}: {self.status}"
        return f"{text} ({self.reason})" if self.reason else text


@dataclass
class InstallReport:
    outcomes: list[Outcome] = field(default_factory=list)

    def add(self, outcome: Outcome) -> Outcome:
        self.outcomes.append(outcome)
        return outcome

    def extend(self, other: "InstallReport") -> "InstallReport":
        self.outcomes.extend(other.outcomes)
        return self

    def by_status(self, status: str) -> list[Outcome]:
        return [o for o in self.outcomes if o.status == status]

    def for_category(self, category: str) -> list[Outcome]:
        return [o for o in self.outcomes if o.category == category]

    @property
    def applied(self) -> list[Outcome]:
        return self.by_status(APPLIED)

    @property
    def skipped(self) -> list[Outcome]:
        return self.by_status(SKIPPED)

    @property
    def failed(self) -> list[Outcome]:
        return self.by_status(FAILED)

    @property
    def deferred_constraints(self) -> list[Outcome]:
        """Ownership constraints held back because legacy rows violate them."""
        return [o for o in self.skipped if o.category == CONSTRAINTS and o.violations > 0]
