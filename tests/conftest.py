"""
Pytest fixtures for the tuition kernel test suite.

Provides:
- A fresh in-memory SQLite database per test (StaticPool, one shared connection)
- A session for flush-only service tests and a session factory for the facade
- A DeterministicClock pinned to 2024-01-01 12:00 UTC
- Student / cash register / plan factories
- Structured log capture

The kernel targets PostgreSQL in production.  Nothing in the services
depends on dialect features beyond SELECT ... FOR UPDATE, which SQLite
ignores; concurrency tests therefore rely on the per-plan process lock.
"""

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from tuition_kernel.db.engine import build_engine, create_tables, drop_tables
from tuition_kernel.domain.clock import DeterministicClock
from tuition_kernel.domain.dtos import CreatePlanRequest
from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.policy import BillingPolicy
from tuition_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from tuition_kernel.models.cash_register import CashRegister
from tuition_kernel.models.student import Student
from tuition_kernel.services.billing_service import TuitionBillingService
from tuition_kernel.services.plan_builder import PlanBuilder

TEST_ACTOR_ID = uuid4()
FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture tuition_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, billing):
            billing.pay_installment(...)
            assert any(r["message"] == "installment_settled" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("tuition_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = build_engine("sqlite:///:memory:")
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Session:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def read_session(session_factory):
    """Open a throwaway session to inspect committed state."""

    def _open() -> Session:
        return session_factory()

    return _open


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def policy() -> BillingPolicy:
    return BillingPolicy()


@pytest.fixture
def actor_id() -> UUID:
    return TEST_ACTOR_ID


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def create_student(session_factory):
    """Persist a student (committed) and return its id."""

    def _create(full_name: str = "Test Student", balance: Decimal = ZERO) -> UUID:
        with session_factory() as sess:
            student = Student(full_name=full_name, balance=balance)
            sess.add(student)
            sess.commit()
            return student.id

    return _create


@pytest.fixture
def create_register(session_factory):
    """Persist a cash register (committed) and return its id."""

    def _create(
        name: str = "Front desk",
        balance: Decimal = ZERO,
        is_active: bool = True,
    ) -> UUID:
        with session_factory() as sess:
            register = CashRegister(name=name, balance=balance, is_active=is_active)
            sess.add(register)
            sess.commit()
            return register.id

    return _create


@pytest.fixture
def student_id(create_student) -> UUID:
    return create_student()


@pytest.fixture
def register_id(create_register) -> UUID:
    return create_register()


@pytest.fixture
def create_plan(session_factory, policy, clock):
    """
    Build and commit a plan through PlanBuilder; returns the plan id.

    Keyword arguments are forwarded to CreatePlanRequest.
    """

    def _create(**kwargs) -> UUID:
        with session_factory() as sess:
            plan = PlanBuilder(sess, policy=policy, clock=clock).create_plan(CreatePlanRequest(**kwargs))
            sess.commit()
            return plan.id

    return _create


@pytest.fixture
def balances(session_factory):
    """Return (student balance, register balance) as committed."""

    def _read(student_id: UUID, register_id: UUID) -> tuple[Decimal, Decimal]:
        with session_factory() as sess:
            return (
                sess.get(Student, student_id).balance,
                sess.get(CashRegister, register_id).balance,
            )

    return _read


class RecordingSink:
    """ActivitySink that keeps every record in memory."""

    def __init__(self):
        self.records: list[dict] = []

    def record(self, user, action, entity, entity_id, description, institution=None, season=None):
        self.records.append(
            {
                "user": user,
                "action": action,
                "entity": entity,
                "entity_id": entity_id,
                "description": description,
                "institution": institution,
                "season": season,
            }
        )


@pytest.fixture
def activity_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def billing(session_factory, policy, clock, activity_sink) -> TuitionBillingService:
    return TuitionBillingService(
        session_factory,
        policy=policy,
        clock=clock,
        activity_sink=activity_sink,
    )


# =============================================================================
# Flush-only helpers bound to the test session
# =============================================================================


@pytest.fixture
def build_plan(session, policy, clock):
    """Build a plan inside the test session (no commit); returns the ORM plan."""

    def _build(**kwargs):
        builder = PlanBuilder(session, policy=policy, clock=clock)
        return builder.create_plan(CreatePlanRequest(**kwargs))

    return _build


@pytest.fixture
def session_balances(session):
    """Return (student balance, register balance) as seen by the test session."""

    def _read(student_id: UUID, register_id: UUID) -> tuple[Decimal, Decimal]:
        session.expire_all()
        return (
            session.get(Student, student_id).balance,
            session.get(CashRegister, register_id).balance,
        )

    return _read
