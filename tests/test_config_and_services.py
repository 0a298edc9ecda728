from datetime import datetime, timezone

import pytest
from pydantic import ValidationError
from sqlalchemy.engine import make_url

from repairshop.config import Settings
from repairshop.models.activity_log import ActivityLog
from repairshop.services.activity_log import describe


def test_audit_mode_is_normalised():
    assert Settings(tenant_audit_mode=" INLINE ").tenant_audit_mode == "inline"


def test_unknown_audit_mode_is_rejected():
    with pytest.raises(ValidationError):
        Settings(tenant_audit_mode="async")


def test_describe_blocked_attempt():
    entry = ActivityLog(
        entity_type="customers",
        entity_id=5,
        severity="critical",
        details={"old_shop_id": 1, "attempted_shop_id": 2, "table_name": "customers"},
        created_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
    )
    assert describe(entry) == "2024-03-01T12:00:00+00:00 customers#5: 1 -> 2 [critical]"


def test_default_url_names_the_installed_driver():
    default = Settings.model_fields["database_url"].default
    assert make_url(default).drivername == "postgresql+psycopg2"
