from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanTemplate(Base):
    """Reusable defaults for creating service plans.

    A template carries the commercial and cadence defaults an organization
    offers (e.g. "Weekly maintenance, Tuesdays, 09:00-11:00"). Plans created
    from a template copy these values; the template is never read again
    during generation.
    """

    __tablename__ = "plan_templates"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    org_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    frequency: Mapped[str] = mapped_column(String, nullable=False)
    anchor_weekdays: Mapped[str | None] = mapped_column(String, nullable=True)  # "mon,thu"
    anchor_day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    window_start: Mapped[str | None] = mapped_column(String, nullable=True)  # HH:MM
    window_end: Mapped[str | None] = mapped_column(String, nullable=True)  # HH:MM
    service_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=45)

    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String, nullable=False, default="GHS")
    tax_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    billing_cadence: Mapped[str] = mapped_column(String, nullable=False, default="monthly")
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class ServicePlan(Base):
    """Recurring service definition for one serviced site.

    Stores:
    - Cadence: frequency, anchor_weekdays and/or anchor_day_of_month
    - Default time-of-day window and expected service duration
    - Validity range: starts_on (inclusive), ends_on (exclusive)
    - Lifecycle: status (trial, active, paused, cancelled), trial_ends_at, paused_until
    - next_occurrence_anchor: the next visit date, starting point for generation
    - last_generated_through: latest occurrence date materialized so far
    - Billing: billing_cadence, next_billing_date and last_billed_date
    """

    __tablename__ = "service_plans"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    org_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    site_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    template_id: Mapped[str | None] = mapped_column(String, nullable=True)

    # Cadence
    frequency: Mapped[str] = mapped_column(String, nullable=False)  # weekly, twiceWeekly, biweekly, monthly, twiceMonthly
    anchor_weekdays: Mapped[str | None] = mapped_column(String, nullable=True)  # "mon" or "mon,thu"
    anchor_day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-28, or -1 for last day
    window_start: Mapped[str] = mapped_column(String, nullable=False)  # HH:MM
    window_end: Mapped[str] = mapped_column(String, nullable=False)  # HH:MM
    service_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=45)

    # Validity
    starts_on: Mapped[date] = mapped_column(Date, nullable=False)
    ends_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String, nullable=False, default="active", index=True)
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trial_ends_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    paused_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_occurrence_anchor: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_generated_through: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Commercial
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String, nullable=False, default="GHS")
    tax_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    billing_cadence: Mapped[str] = mapped_column(String, nullable=False, default="monthly")
    next_billing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_billed_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_service_plans_org_status", "org_id", "status"),  # Sweep query: active plans per org
    )


class ServicePlanWindowOverride(Base):
    """Per-date replacement of a plan's default time window.

    At most one override per (plan_id, date), enforced by unique constraint.
    """

    __tablename__ = "service_plan_window_overrides"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    org_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    plan_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    override_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    window_start: Mapped[str] = mapped_column(String, nullable=False)  # HH:MM
    window_end: Mapped[str] = mapped_column(String, nullable=False)  # HH:MM
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (UniqueConstraint("plan_id", "date", name="uq_window_override_plan_date"),)


class Job(Base):
    """Materialized visit for one plan on one calendar date.

    Window timestamps are local wall-clock datetimes (naive, no timezone).

    Constraints:
    - Unique constraint: (plan_id, scheduled_date) is the real guarantee against
      duplicate materialization when two generation runs race
    - Cancelled jobs keep their row so a skipped date is never recreated
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    org_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    plan_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    site_id: Mapped[str] = mapped_column(String, nullable=False)

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sla_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    service_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=45)

    status: Mapped[str] = mapped_column(String, nullable=False, default="scheduled")  # scheduled, en_route, on_site, completed, failed, cancelled
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("plan_id", "scheduled_date", name="uq_job_plan_scheduled_date"),
        Index("idx_jobs_plan_date", "plan_id", "scheduled_date"),  # Dedup lookup by plan and date range
    )
