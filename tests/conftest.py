"""Root conftest for all tests.

This file makes shared fixtures available across all test modules.
"""

from collections.abc import Callable
from contextlib import contextmanager
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import Base, Job, ServicePlan
from app.scheduling.types import Cadence, JobStatus, PlanStatus

# Every module that does `from app.db.session import get_session`
SESSION_USERS = [
    "app.db.session",
    "app.scheduling.generation",
    "app.scheduling.lifecycle",
    "app.scheduling.orchestrator",
    "app.scheduling.calendar_view",
    "cli.cli",
]


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """
    Provides a transactional in-memory SQLite DB session for tests.

    This fixture:
    - Creates an isolated in-memory SQLite database per test
    - Patches the engine getter to use it
    - Patches get_session() everywhere it is imported to yield the test session
    - Uses transaction rollback for cleanup

    Usage:
        def test_something(db_session):
            db_session.add(ServicePlan(...))
            db_session.flush()
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    def mock_get_engine():
        return engine

    monkeypatch.setattr("app.db.session._get_engine", mock_get_engine)
    monkeypatch.setattr("app.db.session.get_engine", mock_get_engine)

    Base.metadata.create_all(engine)

    connection = engine.connect()
    transaction = connection.begin()

    test_session_local = sessionmaker(bind=connection, autocommit=False, autoflush=False, expire_on_commit=False)
    session = test_session_local()

    @contextmanager
    def mock_get_session():
        yield session
        session.flush()

    # Patch where it's imported/used, not just where it's defined
    for module in SESSION_USERS:
        monkeypatch.setattr(f"{module}.get_session", mock_get_session)
    monkeypatch.setattr("cli.cli.get_engine", mock_get_engine)

    try:
        yield session
    finally:
        session.rollback()
        if transaction.is_active:
            transaction.rollback()
        session.close()
        connection.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def scheduled_followups(monkeypatch) -> list[tuple]:
    """Record follow-up generation requests instead of starting threads.

    Tests that exercise the follow-up dispatcher itself use
    app.scheduling.followups directly, which is left untouched.
    """
    calls: list[tuple] = []

    def _record(plan_id, horizon_days=None, *, org_id=None, background_tasks=None):
        calls.append((plan_id, horizon_days, org_id))

    monkeypatch.setattr("app.scheduling.lifecycle.schedule_generation", _record)
    return calls


@pytest.fixture
def make_plan(db_session: Session) -> Callable[..., ServicePlan]:
    """Factory inserting a ServicePlan row directly (no lifecycle side effects)."""

    def _make(
        *,
        org_id: str = "org-1",
        site_id: str = "site-1",
        frequency: Cadence | str = Cadence.WEEKLY,
        anchor_weekdays: str | None = "wed",
        anchor_day_of_month: int | None = None,
        window_start: str = "09:00",
        window_end: str = "11:00",
        starts_on: date = date(2024, 1, 1),
        ends_on: date | None = None,
        status: PlanStatus = PlanStatus.ACTIVE,
        next_occurrence_anchor: date | None = None,
        **fields,
    ) -> ServicePlan:
        plan = ServicePlan(
            org_id=org_id,
            site_id=site_id,
            frequency=str(frequency),
            anchor_weekdays=anchor_weekdays,
            anchor_day_of_month=anchor_day_of_month,
            window_start=window_start,
            window_end=window_end,
            starts_on=starts_on,
            ends_on=ends_on,
            status=status.value,
            next_occurrence_anchor=next_occurrence_anchor,
            **fields,
        )
        db_session.add(plan)
        db_session.flush()
        return plan

    return _make


@pytest.fixture
def jobs_for(db_session: Session) -> Callable[..., list[Job]]:
    """Return a plan's jobs ordered by date, optionally filtered by status."""

    def _jobs(plan_id: str, status: JobStatus | None = None) -> list[Job]:
        query = db_session.query(Job).filter(Job.plan_id == plan_id)
        if status is not None:
            query = query.filter(Job.status == status.value)
        return query.order_by(Job.scheduled_date).all()

    return _jobs
