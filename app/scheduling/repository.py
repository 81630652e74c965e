"""Repositories for plans, jobs and window overrides.

All methods take an open Session and never commit; the caller's
get_session() block owns the transaction.
"""

from __future__ import annotations

from datetime import date

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import Job, PlanTemplate, ServicePlan, ServicePlanWindowOverride
from app.scheduling.errors import PlanNotFoundError, TemplateNotFoundError
from app.scheduling.types import JobStatus, JobToCreate, PlanSnapshot, PlanStatus, TimeWindow

_UPSERT_INSERTS = {"postgresql": postgresql_insert, "sqlite": sqlite_insert}


class PlanRepository:
    """Repository for service plans."""

    @staticmethod
    def get(session: Session, plan_id: str, org_id: str | None = None) -> ServicePlan:
        """Get a plan by id, optionally scoped to an org.

        Raises:
            PlanNotFoundError: If no plan matches in scope
        """
        query = select(ServicePlan).where(ServicePlan.id == plan_id)
        if org_id is not None:
            query = query.where(ServicePlan.org_id == org_id)
        plan = session.execute(query).scalar_one_or_none()
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    @staticmethod
    def list_for_org(
        session: Session,
        org_id: str,
        *,
        site_id: str | None = None,
        active: bool | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[ServicePlan], int]:
        """List plans for an org, newest first, with total count."""
        query = select(ServicePlan).where(ServicePlan.org_id == org_id)
        if site_id is not None:
            query = query.where(ServicePlan.site_id == site_id)
        if active is True:
            query = query.where(ServicePlan.status == PlanStatus.ACTIVE.value)
        elif active is False:
            query = query.where(ServicePlan.status != PlanStatus.ACTIVE.value)

        total = session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        items = (
            session.execute(query.order_by(ServicePlan.created_at.desc()).offset((page - 1) * limit).limit(limit))
            .scalars()
            .all()
        )
        return list(items), int(total)

    @staticmethod
    def active_plan_ids(session: Session, org_id: str | None = None) -> list[str]:
        query = select(ServicePlan.id).where(ServicePlan.status == PlanStatus.ACTIVE.value)
        if org_id is not None:
            query = query.where(ServicePlan.org_id == org_id)
        return list(session.execute(query.order_by(ServicePlan.created_at, ServicePlan.id)).scalars().all())

    @staticmethod
    def trials_due(session: Session, today: date, org_id: str | None = None) -> list[ServicePlan]:
        query = select(ServicePlan).where(
            ServicePlan.status == PlanStatus.TRIAL.value,
            ServicePlan.trial_ends_at.is_not(None),
            ServicePlan.trial_ends_at <= today,
        )
        if org_id is not None:
            query = query.where(ServicePlan.org_id == org_id)
        return list(session.execute(query).scalars().all())

    @staticmethod
    def pauses_expired(session: Session, today: date, org_id: str | None = None) -> list[ServicePlan]:
        query = select(ServicePlan).where(
            ServicePlan.status == PlanStatus.PAUSED.value,
            ServicePlan.paused_until.is_not(None),
            ServicePlan.paused_until <= today,
        )
        if org_id is not None:
            query = query.where(ServicePlan.org_id == org_id)
        return list(session.execute(query).scalars().all())

    @staticmethod
    def get_template(session: Session, template_id: str, org_id: str) -> PlanTemplate:
        template = session.execute(
            select(PlanTemplate).where(PlanTemplate.id == template_id, PlanTemplate.org_id == org_id)
        ).scalar_one_or_none()
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template


class JobRepository:
    """Repository for materialized jobs."""

    @staticmethod
    def dates_in_range(session: Session, plan_id: str, start: date, end: date) -> set[date]:
        """Dates with a job of any status (cancelled included) for a plan in [start, end]."""
        rows = session.execute(
            select(Job.scheduled_date).where(
                Job.plan_id == plan_id,
                Job.scheduled_date >= start,
                Job.scheduled_date <= end,
            )
        ).scalars()
        return set(rows)

    @staticmethod
    def list_in_range(session: Session, plan_id: str, start: date, end: date) -> list[Job]:
        return list(
            session.execute(
                select(Job)
                .where(Job.plan_id == plan_id, Job.scheduled_date >= start, Job.scheduled_date <= end)
                .order_by(Job.scheduled_date)
            )
            .scalars()
            .all()
        )

    @staticmethod
    def next_scheduled(session: Session, plan_id: str, today: date) -> Job | None:
        """The not-yet-started job closest to, but not before, today."""
        return (
            session.execute(
                select(Job)
                .where(
                    Job.plan_id == plan_id,
                    Job.status == JobStatus.SCHEDULED.value,
                    Job.scheduled_date >= today,
                )
                .order_by(Job.scheduled_date)
                .limit(1)
            )
            .scalars()
            .first()
        )

    @staticmethod
    def upcoming_scheduled(session: Session, plan_id: str, today: date) -> list[Job]:
        return list(
            session.execute(
                select(Job)
                .where(
                    Job.plan_id == plan_id,
                    Job.status == JobStatus.SCHEDULED.value,
                    Job.scheduled_date >= today,
                )
                .order_by(Job.scheduled_date)
            )
            .scalars()
            .all()
        )

    @staticmethod
    def scheduled_on(session: Session, plan_id: str, day: date) -> Job | None:
        return session.execute(
            select(Job).where(
                Job.plan_id == plan_id,
                Job.scheduled_date == day,
                Job.status == JobStatus.SCHEDULED.value,
            )
        ).scalar_one_or_none()

    @staticmethod
    def on_date(session: Session, plan_id: str, day: date) -> Job | None:
        """The plan's job on a date, whatever its status."""
        return session.execute(
            select(Job).where(Job.plan_id == plan_id, Job.scheduled_date == day)
        ).scalar_one_or_none()

    @staticmethod
    def create(
        session: Session,
        plan: PlanSnapshot,
        job: JobToCreate,
        *,
        status: JobStatus = JobStatus.SCHEDULED,
        cancel_reason: str | None = None,
    ) -> bool:
        """Insert one job unless the (plan_id, scheduled_date) slot is already taken.

        Uses INSERT ... ON CONFLICT DO NOTHING on PostgreSQL and SQLite so a
        concurrent run that materialized the same date is skipped instead of
        aborting the transaction.

        Returns:
            True if a row was inserted, False if the date was already materialized
        """
        values = {
            "org_id": plan.org_id,
            "plan_id": plan.plan_id,
            "site_id": plan.site_id,
            "scheduled_date": job.scheduled_date,
            "window_start": job.window_start,
            "window_end": job.window_end,
            "sla_minutes": job.sla_minutes,
            "service_duration_minutes": plan.service_duration_minutes,
            "status": status.value,
            "cancel_reason": cancel_reason,
        }
        dialect = session.get_bind().dialect.name
        if dialect in _UPSERT_INSERTS:
            stmt = (
                _UPSERT_INSERTS[dialect](Job.__table__)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["plan_id", "scheduled_date"])
            )
            inserted = session.execute(stmt).rowcount == 1
        else:
            try:
                with session.begin_nested():
                    session.add(Job(**values))
                inserted = True
            except IntegrityError:
                inserted = False
        if not inserted:
            logger.debug(
                "Job already materialized by a concurrent run",
                plan_id=plan.plan_id,
                scheduled_date=job.scheduled_date.isoformat(),
            )
        return inserted

    @staticmethod
    def cancel(job: Job, reason: str | None = None) -> Job:
        job.status = JobStatus.CANCELLED.value
        job.cancel_reason = reason
        return job

    @staticmethod
    def count_active_future(session: Session, plan_id: str, today: date) -> int:
        return session.execute(
            select(func.count(Job.id)).where(
                Job.plan_id == plan_id,
                Job.scheduled_date >= today,
                Job.status != JobStatus.CANCELLED.value,
            )
        ).scalar_one()


class WindowOverrideRepository:
    """Repository for per-date window overrides."""

    @staticmethod
    def windows_in_range(session: Session, plan_id: str, start: date, end: date) -> dict[date, TimeWindow]:
        rows = session.execute(
            select(ServicePlanWindowOverride).where(
                ServicePlanWindowOverride.plan_id == plan_id,
                ServicePlanWindowOverride.override_date >= start,
                ServicePlanWindowOverride.override_date <= end,
            )
        ).scalars()
        return {row.override_date: TimeWindow.from_strings(row.window_start, row.window_end) for row in rows}

    @staticmethod
    def upsert(
        session: Session,
        plan: ServicePlan,
        day: date,
        window: TimeWindow,
        reason: str | None = None,
    ) -> ServicePlanWindowOverride:
        override = session.execute(
            select(ServicePlanWindowOverride).where(
                ServicePlanWindowOverride.plan_id == plan.id,
                ServicePlanWindowOverride.override_date == day,
            )
        ).scalar_one_or_none()
        if override is None:
            override = ServicePlanWindowOverride(org_id=plan.org_id, plan_id=plan.id, override_date=day)
            session.add(override)
        override.window_start = window.start_str()
        override.window_end = window.end_str()
        override.reason = reason
        session.flush()
        return override

    @staticmethod
    def delete_for_plan(session: Session, plan_id: str) -> None:
        rows = session.execute(
            select(ServicePlanWindowOverride).where(ServicePlanWindowOverride.plan_id == plan_id)
        ).scalars()
        for row in rows.all():
            session.delete(row)
