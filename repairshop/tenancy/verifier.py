"""
Invariant verifier: certifies from catalog metadata alone (no writes) whether the
isolation controls are active. Conservative by construction: partial constraint
coverage is reported as inactive, and any catalog error turns every flag off.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.engine import Engine

from repairshop.config import AUDIT_MODE_AUTONOMOUS, AUDIT_MODE_INLINE, Settings, get_settings
from repairshop.tenancy import policy
from repairshop.tenancy.introspection import SchemaIntrospector

logger = logging.getLogger(__name__)


@dataclass
class VerificationReport:
    triggers_active: bool
    constraints_active: bool
    auditing_active: bool
    details: list[str] = field(default_factory=list)
    constraint_count: int = 0
    trigger_count: int = 0
    audit_mode: str | None = None
    constraints_present: list[str] = field(default_factory=list)

    @property
    def constraints_missing(self) -> list[str]:
        return [c for c in policy.OWNERSHIP_CONSTRAINTS if c not in self.constraints_present]

    @property
    def secure(self) -> bool:
        return self.triggers_active and self.constraints_active and self.auditing_active

    @property
    def constraints_partial(self) -> bool:
        return 0 < self.constraint_count < len(policy.OWNERSHIP_CONSTRAINTS)


class InvariantVerifier:
    def __init__(
        self,
        engine: Engine | None = None,
        introspector: SchemaIntrospector | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        if introspector is None:
            if engine is None:
                raise ValueError("engine or introspector required")
            introspector = SchemaIntrospector(engine, self.settings.tenant_schema)
        self.introspector = introspector

    def verify(self) -> VerificationReport:
        details: list[str] = []
        triggers_active = constraints_active = auditing_active = True
        expected = len(policy.OWNERSHIP_CONSTRAINTS)
        try:
            if self.introspector.function_exists(policy.IMMUTABILITY_FUNCTION):
                details.append("✅ Shop ID immutability trigger function exists")
            else:
                triggers_active = False
                details.append("❌ Shop ID immutability trigger function not found")

            audit_mode = None
            if self.introspector.function_exists(policy.AUDIT_FUNCTION):
                details.append("✅ Audit trigger function exists")
                source = self.introspector.function_source(policy.AUDIT_FUNCTION) or ""
                audit_mode = AUDIT_MODE_AUTONOMOUS if "dblink_exec" in source else AUDIT_MODE_INLINE
            else:
                auditing_active = False
                details.append("❌ Audit trigger function not found")

            present = self.introspector.existing_constraints(policy.OWNERSHIP_CONSTRAINTS)
            constraint_count = len(present)
            if constraint_count == 0:
                constraints_active = False
                details.append(f"❌ No ownership constraints active (found 0/{expected})")
            elif constraint_count < expected:
                constraints_active = False
                details.append(f"⚠️  INCOMPLETE: Only {constraint_count}/{expected} ownership constraints active")
                details.append("   Missing constraints leave tenant isolation incomplete")
            else:
                details.append(f"✅ All ownership constraints active ({expected}/{expected})")

            trigger_count = self.introspector.count_triggers(policy.TRIGGER_NAME_PATTERN)
            details.append(f"ℹ️  {trigger_count} shop_id protection triggers active")
            if audit_mode == AUDIT_MODE_INLINE:
                details.append("ℹ️  Audit mode: inline (records are rolled back with the rejected UPDATE)")
            elif audit_mode:
                details.append("ℹ️  Audit mode: autonomous (dblink loopback)")
                server = self.settings.tenant_audit_server
                if not self.introspector.foreign_server_exists(server):
                    # The audit trigger fires first, so every blocked UPDATE would fail inside dblink
                    auditing_active = False
                    details.append(f"❌ Loopback server {server} not found; audit writes will fail")
        except Exception as e:
            logger.error("Security verification failed: %s", e)
            details.append(f"❌ Error verifying security: {e}")
            return VerificationReport(False, False, False, details)

        return VerificationReport(
            triggers_active,
            constraints_active,
            auditing_active,
            details,
            constraint_count=constraint_count,
            trigger_count=trigger_count,
            audit_mode=audit_mode,
            constraints_present=present,
        )
