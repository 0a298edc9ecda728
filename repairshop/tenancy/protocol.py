"""
Protocol harness: proves the installed controls behave as intended by performing real
mutations. Metadata presence (verifier) is necessary but not sufficient; a trigger can
exist and still be wired to the wrong table or fire in the wrong order.

Every scenario creates its own disposable rows and removes them whatever the result.
Audit rows are never removed (the activity log is append-only).
"""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from repairshop.database import SessionLocal
from repairshop.models.customer import Customer
from repairshop.models.shop import Shop
from repairshop.models.user import User, UserRole
from repairshop.services.activity_log import count_blocked_attempts
from repairshop.tenancy import policy

logger = logging.getLogger(__name__)

# Audit rows expected per rejected UPDATE
EXPECTED_AUDIT_DELTA = 1


@dataclass
class ScenarioResult:
    name: str
    passed: bool
    message: str
    expected: str
    actual: str

    def line(self) -> str:
        return f"  {'✅' if self.passed else '❌'} {self.name}"


@dataclass
class ProtocolSummary:
    results: list[ScenarioResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return len(self.results) - self.passed

    @property
    def failures(self) -> list[ScenarioResult]:
        return [r for r in self.results if not r.passed]

    @property
    def exit_code(self) -> int:
        # An empty run proves nothing
        return 0 if self.results and self.failed == 0 else 1


class ProtocolHarness:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory
        self.run_id = uuid.uuid4().hex[:8]

    @contextmanager
    def _session(self):
        db: Session = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def _delete(self, model, row_id: int | None) -> None:
        if row_id is None:
            return
        with self._session() as db:
            try:
                db.query(model).filter(model.id == row_id).delete(synchronize_session=False)
                db.commit()
            except DBAPIError as e:
                db.rollback()
                logger.warning("Cleanup of %s id=%s failed: %s", model.__tablename__, row_id, e.orig)

    def _insert(self, row) -> int:
        with self._session() as db:
            db.add(row)
            db.commit()
            return row.id

    def _new_customer(self, shop_id: int | None, label: str) -> Customer:
        return Customer(
            first_name=label,
            last_name=f"Protocol {self.run_id}",
            phone="+49123456789",
            shop_id=shop_id,
        )

    def _new_owner(self, shop_id: int | None, label: str) -> User:
        return User(
            username=f"protocol-{label}-{self.run_id}",
            email=f"protocol-{label}-{self.run_id}@example.com",
            hashed_password="!",
            role=UserRole.owner,
            shop_id=shop_id,
        )

    def _update_shop_id(self, customer_id: int, shop_id: int) -> None:
        with self._session() as db:
            try:
                db.query(Customer).filter(Customer.id == customer_id).update(
                    {Customer.shop_id: shop_id}, synchronize_session=False
                )
                db.commit()
            except DBAPIError:
                db.rollback()
                raise

    def _stored_shop_id(self, customer_id: int) -> int | None:
        with self._session() as db:
            return db.query(Customer.shop_id).filter(Customer.id == customer_id).scalar()

    def _blocked_count(self, customer_id: int) -> int:
        with self._session() as db:
            return count_blocked_attempts(db, table=Customer.__tablename__, entity_id=customer_id)

    # --- Scenarios ---

    def reject_on_modify(self, shop_a: int, shop_b: int) -> ScenarioResult:
        name = "Prevent shop_id modification via UPDATE"
        expected = f"UPDATE rejected with {policy.IMMUTABLE_VIOLATION}, row keeps shop_id={shop_a}"
        customer_id = None
        try:
            customer_id = self._insert(self._new_customer(shop_a, "Security"))
            try:
                self._update_shop_id(customer_id, shop_b)
            except DBAPIError as e:
                kind = policy.classify_db_error(e)
                stored = self._stored_shop_id(customer_id)
                if kind != policy.IMMUTABLE_VIOLATION:
                    return ScenarioResult(name, False, f"Unexpected error: {e.orig}", expected, str(e.orig))
                if stored != shop_a:
                    return ScenarioResult(name, False, "Row changed despite rejection", expected, f"shop_id={stored}")
                return ScenarioResult(name, True, "Trigger correctly prevented shop_id change", expected, f"rejected ({kind})")
            return ScenarioResult(
                name, False, "Trigger did not prevent shop_id change", expected,
                f"UPDATE succeeded, shop_id={self._stored_shop_id(customer_id)}",
            )
        except DBAPIError as e:
            return ScenarioResult(name, False, f"Setup failed: {e.orig}", expected, "setup error")
        finally:
            self._delete(Customer, customer_id)

    def allow_initial_assignment(self, shop_a: int, shop_b: int) -> ScenarioResult:
        name = "Allow initial shop_id assignment (NULL → value)"
        expected = f"UPDATE succeeded, shop_id={shop_b}"
        customer_id = None
        try:
            customer_id = self._insert(self._new_customer(None, "Initial"))
            try:
                self._update_shop_id(customer_id, shop_b)
            except DBAPIError as e:
                return ScenarioResult(name, False, "Initial assignment was blocked", expected, f"UPDATE failed: {e.orig}")
            stored = self._stored_shop_id(customer_id)
            if stored != shop_b:
                return ScenarioResult(name, False, "Assignment not persisted", expected, f"shop_id={stored}")
            return ScenarioResult(name, True, "Initial assignment correctly allowed", expected, expected)
        except DBAPIError as e:
            return ScenarioResult(name, False, f"Setup failed: {e.orig}", expected, "setup error")
        finally:
            self._delete(Customer, customer_id)

    def allow_same_value(self, shop_a: int, shop_b: int) -> ScenarioResult:
        name = "Allow UPDATE that keeps the same shop_id"
        expected = f"UPDATE succeeded, shop_id={shop_a}"
        customer_id = None
        try:
            customer_id = self._insert(self._new_customer(shop_a, "Same"))
            try:
                self._update_shop_id(customer_id, shop_a)
            except DBAPIError as e:
                return ScenarioResult(name, False, "No-op update was blocked", expected, f"UPDATE failed: {e.orig}")
            return ScenarioResult(name, True, "Same-value update correctly allowed", expected, expected)
        except DBAPIError as e:
            return ScenarioResult(name, False, f"Setup failed: {e.orig}", expected, "setup error")
        finally:
            self._delete(Customer, customer_id)

    def reject_owner_without_shop(self, shop_a: int, shop_b: int) -> ScenarioResult:
        name = "Prevent owner creation without shop_id"
        constraint = policy.constraint_name(UserRole.owner.value)
        expected = f"INSERT rejected by {constraint}"
        user_id = None
        try:
            user_id = self._insert(self._new_owner(None, "no-shop"))
        except DBAPIError as e:
            kind = policy.classify_db_error(e)
            if kind == constraint:
                return ScenarioResult(name, True, "Constraint correctly prevented owner without shop_id", expected, f"rejected ({kind})")
            return ScenarioResult(name, False, f"Unexpected error: {e.orig}", expected, str(e.orig))
        finally:
            self._delete(User, user_id)
        return ScenarioResult(name, False, "Constraint did not prevent owner without shop_id", expected, "INSERT succeeded")

    def accept_owner_with_shop(self, shop_a: int, shop_b: int) -> ScenarioResult:
        name = "Allow owner creation with shop_id"
        expected = "INSERT succeeded"
        user_id = None
        try:
            user_id = self._insert(self._new_owner(shop_a, "with-shop"))
            return ScenarioResult(name, True, "Owner with shop_id created successfully", expected, expected)
        except DBAPIError as e:
            return ScenarioResult(name, False, f"Owner creation with shop_id failed: {e.orig}", expected, f"INSERT failed: {e.orig}")
        finally:
            self._delete(User, user_id)

    def audit_side_effect(self, shop_a: int, shop_b: int) -> ScenarioResult:
        name = "Audit log created for shop_id violation"
        expected = f"+{EXPECTED_AUDIT_DELTA} {policy.AUDIT_ACTION} record for customers row"
        customer_id = None
        try:
            customer_id = self._insert(self._new_customer(shop_a, "Audit"))
            before = self._blocked_count(customer_id)
            try:
                self._update_shop_id(customer_id, shop_b)
                rejected = False
            except DBAPIError:
                rejected = True
            after = self._blocked_count(customer_id)
            delta = after - before
            actual = f"+{delta} record(s){'' if rejected else ', UPDATE was not rejected'}"
            if rejected and delta == EXPECTED_AUDIT_DELTA:
                return ScenarioResult(name, True, "Security violation logged successfully", expected, actual)
            return ScenarioResult(name, False, "No matching audit entry for the rejected UPDATE", expected, actual)
        except DBAPIError as e:
            return ScenarioResult(name, False, f"Test failed: {e.orig}", expected, "test error")
        finally:
            self._delete(Customer, customer_id)

    def scenarios(self):
        return [
            self.reject_on_modify,
            self.allow_initial_assignment,
            self.allow_same_value,
            self.reject_owner_without_shop,
            self.accept_owner_with_shop,
            self.audit_side_effect,
        ]

    def run(self) -> ProtocolSummary:
        summary = ProtocolSummary()
        shop_ids: list[int] = []
        try:
            for label in ("A", "B"):
                shop_ids.append(self._insert(Shop(name=f"Protocol shop {label} {self.run_id}", status="active")))
        except DBAPIError as e:
            summary.results.append(ScenarioResult(
                "Create disposable shops", False, f"Setup failed: {e.orig}", "two shops", "setup error"
            ))
            for shop_id in shop_ids:
                self._delete(Shop, shop_id)
            return summary
        try:
            for scenario in self.scenarios():
                result = scenario(*shop_ids)
                logger.info("%s: %s", result.name, "passed" if result.passed else "FAILED")
                summary.results.append(result)
        finally:
            for shop_id in shop_ids:
                self._delete(Shop, shop_id)
        return summary
