"""
End-to-end against a disposable PostgreSQL database (TEST_DATABASE_URL). Installs the
controls, exercises them with real statements and removes them again.
"""
import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from repairshop.config import AUDIT_MODE_INLINE, get_settings
from repairshop.database import SessionLocal
from repairshop.models.shop import Shop
from repairshop.models.user import User, UserRole
from repairshop.services.activity_log import recent_blocked_attempts
from repairshop.services.principals import assign_shop, find_unassigned
from repairshop.tenancy import policy
from repairshop.tenancy.installer import CONSTRAINTS, InvariantInstaller
from repairshop.tenancy.introspection import SchemaIntrospector
from repairshop.tenancy.protocol import ProtocolHarness
from repairshop.tenancy.verifier import InvariantVerifier


@pytest.fixture(scope="module")
def installed(pg_engine):
    installer = InvariantInstaller(pg_engine)
    report = installer.apply_all()
    yield report
    installer.remove_all()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def _shop(db, name):
    shop = Shop(name=name, status="active")
    db.add(shop)
    db.commit()
    return shop


def test_apply_installs_every_control(installed, pg_engine):
    assert installed.failed == []
    report = InvariantVerifier(pg_engine).verify()
    assert report.secure, report.details
    assert report.constraint_count == 3
    triggers = SchemaIntrospector(pg_engine).trigger_names("customers")
    assert triggers == [policy.AUDIT_TRIGGER, policy.IMMUTABILITY_TRIGGER]


def test_reapply_is_idempotent(installed, pg_engine):
    again = InvariantInstaller(pg_engine).apply_all()
    assert again.failed == []
    assert {o.reason for o in again.for_category(CONSTRAINTS)} == {"already present"}
    assert InvariantVerifier(pg_engine).verify().secure


def test_protocol_scenarios(installed):
    summary = ProtocolHarness(SessionLocal).run()
    failures = [r.name for r in summary.failures]
    if get_settings().tenant_audit_mode == AUDIT_MODE_INLINE:
        # inline audit rows roll back with the rejected UPDATE
        assert failures == ["Audit log created for shop_id violation"]
    else:
        assert failures == [], [(r.name, r.actual) for r in summary.failures]


def test_principal_cannot_move_between_shops(installed, db):
    shop_a = _shop(db, "Integration A")
    shop_b = _shop(db, "Integration B")
    user = User(email="move@example.com", hashed_password="!", role=UserRole.employee, shop_id=shop_a.id)
    db.add(user)
    db.commit()
    try:
        with pytest.raises(IntegrityError) as exc:
            db.execute(text("UPDATE users SET shop_id = :b WHERE id = :id"), {"b": shop_b.id, "id": user.id})
            db.commit()
        db.rollback()
        assert policy.classify_db_error(exc.value) == policy.IMMUTABLE_VIOLATION
        if get_settings().tenant_audit_mode != AUDIT_MODE_INLINE:
            latest = recent_blocked_attempts(db, 1, shop_id=shop_a.id)
            assert latest and latest[0].entity_type == "users"
            assert latest[0].details["attempted_shop_id"] == shop_b.id
    finally:
        db.rollback()
        db.query(User).filter(User.id == user.id).delete()
        db.query(Shop).filter(Shop.id.in_([shop_a.id, shop_b.id])).delete(synchronize_session=False)
        db.commit()


def test_legacy_owner_defers_only_its_constraint(installed, pg_engine, db):
    installer = InvariantInstaller(pg_engine)
    installer.remove_all()
    shop = _shop(db, "Integration legacy")
    legacy = User(email="legacy@example.com", hashed_password="!", role=UserRole.owner, shop_id=None)
    db.add(legacy)
    db.commit()
    try:
        report = installer.apply_all()
        deferred = report.deferred_constraints
        assert [(o.target, o.violations) for o in deferred] == [("owner_must_have_shop", 1)]
        verification = InvariantVerifier(pg_engine).verify()
        assert verification.constraints_active is False
        assert verification.constraint_count == 2
        assert verification.constraints_missing == ["owner_must_have_shop"]

        assert [u.id for u in find_unassigned(db, "owner")] == [legacy.id]
        assign_shop(db, legacy.id, shop.id)
        db.commit()
        installer.apply_all()
        assert InvariantVerifier(pg_engine).verify().secure
    finally:
        db.rollback()
        db.query(User).filter(User.id == legacy.id).delete()
        db.query(Shop).filter(Shop.id == shop.id).delete()
        db.commit()


def test_remove_all_leaves_nothing_behind(installed, pg_engine):
    report = InvariantInstaller(pg_engine).remove_all()
    assert report.failed == []
    verification = InvariantVerifier(pg_engine).verify()
    assert not verification.triggers_active
    assert not verification.auditing_active
    assert verification.constraint_count == 0
    assert verification.trigger_count == 0
    InvariantInstaller(pg_engine).apply_all()
