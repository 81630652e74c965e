"""Service plan lifecycle operations.

Each operation opens its own session, checks the status transition, mutates
the plan (and, for skip/cancel/override, its jobs) and commits on exit.
Follow-up generation after create/resume is scheduled only after the
session has committed, so the follow-up always sees the new plan state.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any

from fastapi import BackgroundTasks
from loguru import logger

from app.config.settings import settings
from app.db.models import Job, ServicePlan, ServicePlanWindowOverride
from app.db.session import get_session
from app.scheduling.billing import first_billing_date, next_billing_date
from app.scheduling.cadence import advance_one_step
from app.scheduling.errors import StaleStateError
from app.scheduling.followups import schedule_generation
from app.scheduling.generation import first_plan_occurrence, next_open_occurrence, roll_anchor_forward
from app.scheduling.materializer import build_job, compute_sla_minutes
from app.scheduling.repository import JobRepository, PlanRepository, WindowOverrideRepository
from app.scheduling.transitions import ensure_transition, refresh_trial_status
from app.scheduling.types import (
    Cadence,
    JobStatus,
    PlanSnapshot,
    PlanStatus,
    ServicePlanCreate,
    ServicePlanUpdate,
    TimeWindow,
    format_weekdays,
    parse_weekdays,
)
from app.scheduling.validators import validate_cadence_config, validate_validity_range

SKIPPED_JOB_REASON = "skipped"
PLAN_CANCELLED_JOB_REASON = "plan cancelled"


def _default_window() -> TimeWindow:
    return TimeWindow.from_strings(settings.default_window_start, settings.default_window_end)


def _finish(session, plan: ServicePlan) -> ServicePlan:
    session.flush()
    session.refresh(plan)
    return plan


def create_plan(
    org_id: str,
    request: ServicePlanCreate,
    *,
    today: date | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> ServicePlan:
    """Create a plan and schedule its initial generation.

    Raises:
        InvalidCadenceConfigError: If anchors do not fit the cadence or the validity range is empty
    """
    today = today or date.today()
    starts_on = request.starts_on or today
    validate_cadence_config(request.frequency, request.anchor_weekdays, request.anchor_day_of_month)
    validate_validity_range(starts_on, request.ends_on)

    window = request.window or _default_window()
    trial_ends_at = starts_on + timedelta(days=request.trial_days) if request.trial_days > 0 else None

    with get_session() as session:
        plan = ServicePlan(
            org_id=org_id,
            site_id=request.site_id,
            template_id=request.template_id,
            frequency=request.frequency.value,
            anchor_weekdays=format_weekdays(request.anchor_weekdays),
            anchor_day_of_month=request.anchor_day_of_month,
            window_start=window.start_str(),
            window_end=window.end_str(),
            service_duration_minutes=request.service_duration_minutes or settings.default_service_duration_minutes,
            starts_on=starts_on,
            ends_on=request.ends_on,
            status=(PlanStatus.TRIAL if trial_ends_at else PlanStatus.ACTIVE).value,
            trial_days=request.trial_days,
            trial_ends_at=trial_ends_at,
            price_cents=request.price_cents,
            currency=request.currency,
            tax_pct=request.tax_pct,
            discount_pct=request.discount_pct,
            billing_cadence=request.billing_cadence.value,
            notes=request.notes,
        )
        plan.next_occurrence_anchor = first_plan_occurrence(plan, starts_on)
        plan.next_billing_date = first_billing_date(request.billing_cadence, trial_ends_at or starts_on)
        session.add(plan)
        plan = _finish(session, plan)

    logger.info(
        "Service plan created",
        plan_id=plan.id,
        org_id=org_id,
        frequency=plan.frequency,
        status=plan.status,
        next_occurrence_anchor=plan.next_occurrence_anchor.isoformat() if plan.next_occurrence_anchor else None,
    )
    schedule_generation(plan.id, settings.default_horizon_days, org_id=org_id, background_tasks=background_tasks)
    return plan


def create_plan_from_template(
    org_id: str,
    template_id: str,
    overrides: dict[str, Any],
    *,
    today: date | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> ServicePlan:
    """Create a plan from a template; fields present in `overrides` win over the template.

    Raises:
        TemplateNotFoundError: If the template does not exist in the org
        InvalidCadenceConfigError: If the merged configuration is invalid
    """
    with get_session() as session:
        template = PlanRepository.get_template(session, template_id, org_id)
        defaults: dict[str, Any] = {
            "frequency": template.frequency,
            "anchor_weekdays": template.anchor_weekdays,
            "anchor_day_of_month": template.anchor_day_of_month,
            "service_duration_minutes": template.service_duration_minutes,
            "price_cents": template.price_cents,
            "currency": template.currency,
            "tax_pct": template.tax_pct,
            "discount_pct": template.discount_pct,
            "billing_cadence": template.billing_cadence,
            "trial_days": template.trial_days,
        }
        if template.window_start and template.window_end:
            defaults["window"] = {"start": template.window_start, "end": template.window_end}

    request = ServicePlanCreate.model_validate({**defaults, **overrides, "template_id": template_id})
    return create_plan(org_id, request, today=today, background_tasks=background_tasks)


def get_plan(plan_id: str, *, org_id: str) -> ServicePlan:
    with get_session() as session:
        return PlanRepository.get(session, plan_id, org_id)


def list_plans(
    org_id: str,
    *,
    site_id: str | None = None,
    active: bool | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[ServicePlan], int]:
    with get_session() as session:
        return PlanRepository.list_for_org(session, org_id, site_id=site_id, active=active, page=page, limit=limit)


def update_plan(
    plan_id: str,
    request: ServicePlanUpdate,
    *,
    org_id: str,
    today: date | None = None,
) -> ServicePlan:
    """Apply a partial update.

    Changing any cadence field re-validates the merged cadence configuration
    and recomputes the anchor from today. Jobs already materialized keep their
    dates and windows.

    Raises:
        PlanNotFoundError: If the plan does not exist in the org
        StaleStateError: If the plan is cancelled
        InvalidCadenceConfigError: If the merged configuration is invalid
    """
    today = today or date.today()
    changes = request.model_fields_set

    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        ensure_transition(plan, "update")

        if changes & {"frequency", "anchor_weekdays", "anchor_day_of_month"}:
            cadence = request.frequency if request.frequency is not None else Cadence.parse(plan.frequency)
            weekdays = (
                request.anchor_weekdays if "anchor_weekdays" in changes else list(parse_weekdays(plan.anchor_weekdays))
            ) or []
            day_of_month = request.anchor_day_of_month if "anchor_day_of_month" in changes else plan.anchor_day_of_month
            # Switching between weekday and day-of-month cadences drops the unused anchor
            if "frequency" in changes:
                if cadence.uses_weekdays and "anchor_day_of_month" not in changes:
                    day_of_month = None
                elif not cadence.uses_weekdays and "anchor_weekdays" not in changes:
                    weekdays = []
            validate_cadence_config(cadence, weekdays, day_of_month)

            plan.frequency = cadence.value
            plan.anchor_weekdays = format_weekdays(weekdays)
            plan.anchor_day_of_month = day_of_month
            plan.next_occurrence_anchor = None
            plan.next_occurrence_anchor = first_plan_occurrence(plan, today)

        if "window" in changes and request.window is not None:
            plan.window_start = request.window.start_str()
            plan.window_end = request.window.end_str()

        if "ends_on" in changes:
            validate_validity_range(plan.starts_on, request.ends_on)
            plan.ends_on = request.ends_on

        for field in ("service_duration_minutes", "price_cents", "tax_pct", "discount_pct"):
            value = getattr(request, field)
            if field in changes and value is not None:
                setattr(plan, field, value)
        if "notes" in changes:
            plan.notes = request.notes

        if "billing_cadence" in changes and request.billing_cadence is not None:
            plan.billing_cadence = request.billing_cadence.value
            plan.next_billing_date = first_billing_date(
                request.billing_cadence, max(today, plan.trial_ends_at or plan.starts_on)
            )

        plan = _finish(session, plan)

    logger.info("Service plan updated", plan_id=plan_id, fields=sorted(changes))
    return plan


def delete_plan(plan_id: str, *, org_id: str, today: date | None = None) -> None:
    """Delete a plan that has no upcoming work.

    Past and cancelled jobs are kept as history.

    Raises:
        StaleStateError: If the plan still has non-cancelled jobs from today on
    """
    today = today or date.today()
    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        upcoming = JobRepository.count_active_future(session, plan.id, today)
        if upcoming:
            raise StaleStateError(plan.status, "delete", [f"upcoming_jobs={upcoming}"])
        WindowOverrideRepository.delete_for_plan(session, plan.id)
        session.delete(plan)
    logger.info("Service plan deleted", plan_id=plan_id, org_id=org_id)


def pause_plan(
    plan_id: str,
    *,
    org_id: str | None = None,
    until: date | None = None,
) -> ServicePlan:
    """Suspend generation. The anchor is left untouched.

    Args:
        until: Optional date on which the horizon sweep resumes the plan

    Raises:
        StaleStateError: If the plan is not active
    """
    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        ensure_transition(plan, "pause")
        plan.status = PlanStatus.PAUSED.value
        plan.paused_until = until
        plan = _finish(session, plan)
    logger.info("Service plan paused", plan_id=plan_id, until=until.isoformat() if until else None)
    return plan


def _resume(plan: ServicePlan, today: date) -> None:
    plan.status = PlanStatus.ACTIVE.value
    plan.paused_until = None
    plan.next_occurrence_anchor = first_plan_occurrence(plan, today)


def resume_plan(
    plan_id: str,
    *,
    org_id: str | None = None,
    today: date | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> ServicePlan:
    """Reactivate a paused plan, recompute its anchor from today and schedule generation.

    Raises:
        StaleStateError: If the plan is not paused
    """
    today = today or date.today()
    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        ensure_transition(plan, "resume")
        _resume(plan, today)
        plan = _finish(session, plan)

    logger.info(
        "Service plan resumed",
        plan_id=plan_id,
        next_occurrence_anchor=plan.next_occurrence_anchor.isoformat() if plan.next_occurrence_anchor else None,
    )
    schedule_generation(plan.id, settings.default_horizon_days, org_id=org_id, background_tasks=background_tasks)
    return plan


def _record_skipped_visit(session, plan: ServicePlan, day: date) -> Job:
    snapshot = PlanSnapshot.from_model(plan)
    override = WindowOverrideRepository.windows_in_range(session, plan.id, day, day).get(day)
    JobRepository.create(
        session,
        snapshot,
        build_job(snapshot, day, override),
        status=JobStatus.CANCELLED,
        cancel_reason=SKIPPED_JOB_REASON,
    )
    return JobRepository.on_date(session, plan.id, day)


def skip_next(
    plan_id: str,
    *,
    org_id: str | None = None,
    today: date | None = None,
) -> tuple[ServicePlan, Job | None]:
    """Skip the next visit.

    The next visit is the earliest of the nearest not-yet-started job and the
    first occurrence that has no job yet. A scheduled job is cancelled; an
    occurrence that was never materialized gets a cancelled job row, so later
    generation runs see the date as taken and never recreate it. The anchor
    advances by one cadence step either way.

    Returns:
        The updated plan and the cancelled job, or None when the plan has no
        upcoming occurrence left

    Raises:
        StaleStateError: If the plan is cancelled
    """
    today = today or date.today()
    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        ensure_transition(plan, "skip")

        job = JobRepository.next_scheduled(session, plan.id, today)
        open_day = next_open_occurrence(session, plan, today)
        if open_day is not None and (job is None or open_day < job.scheduled_date):
            job = _record_skipped_visit(session, plan, open_day)
        elif job is not None:
            JobRepository.cancel(job, SKIPPED_JOB_REASON)

        anchor = roll_anchor_forward(plan, today)
        if anchor is not None:
            plan.next_occurrence_anchor = advance_one_step(
                Cadence.parse(plan.frequency), anchor, day_of_month=plan.anchor_day_of_month
            )
        plan = _finish(session, plan)

    logger.info(
        "Next visit skipped",
        plan_id=plan_id,
        skipped_job_id=job.id if job else None,
        next_occurrence_anchor=plan.next_occurrence_anchor.isoformat() if plan.next_occurrence_anchor else None,
    )
    return plan, job


def cancel_plan(
    plan_id: str,
    *,
    org_id: str | None = None,
    reason: str | None = None,
    today: date | None = None,
) -> ServicePlan:
    """Cancel a plan (terminal) and every scheduled job from today on.

    Raises:
        StaleStateError: If the plan is already cancelled
    """
    today = today or date.today()
    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        ensure_transition(plan, "cancel")
        plan.status = PlanStatus.CANCELLED.value
        plan.cancelled_at = datetime.now(timezone.utc)
        plan.cancel_reason = reason
        plan.paused_until = None

        cancelled_jobs = JobRepository.upcoming_scheduled(session, plan.id, today)
        for job in cancelled_jobs:
            JobRepository.cancel(job, PLAN_CANCELLED_JOB_REASON)
        plan = _finish(session, plan)

    logger.info("Service plan cancelled", plan_id=plan_id, reason=reason, jobs_cancelled=len(cancelled_jobs))
    return plan


def record_billing(
    plan_id: str,
    *,
    org_id: str | None = None,
    billed_on: date | None = None,
) -> ServicePlan:
    """Record that the plan's current billing period was invoiced.

    Sets last_billed_date and moves next_billing_date forward one billing
    period at a time until it lies after billed_on. Per-visit plans only get
    last_billed_date.

    Raises:
        StaleStateError: If the plan is in trial or cancelled
    """
    billed_on = billed_on or date.today()
    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        ensure_transition(plan, "bill")

        due = next_billing_date(plan.billing_cadence, plan.next_billing_date or billed_on)
        while due is not None and due <= billed_on:
            due = next_billing_date(plan.billing_cadence, due)
        plan.last_billed_date = billed_on
        plan.next_billing_date = due
        plan = _finish(session, plan)

    logger.info(
        "Billing recorded",
        plan_id=plan_id,
        billed_on=billed_on.isoformat(),
        next_billing_date=plan.next_billing_date.isoformat() if plan.next_billing_date else None,
    )
    return plan


def set_window_override(
    plan_id: str,
    day: date,
    window: TimeWindow,
    *,
    org_id: str | None = None,
    reason: str | None = None,
) -> ServicePlanWindowOverride:
    """Replace the plan's default window for one date.

    A job already scheduled on that date gets the new window and SLA.

    Raises:
        StaleStateError: If the plan is cancelled
    """
    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        ensure_transition(plan, "override")
        override = WindowOverrideRepository.upsert(session, plan, day, window, reason)

        job = JobRepository.scheduled_on(session, plan.id, day)
        if job is not None:
            job.window_start, job.window_end = window.on(day)
            job.sla_minutes = compute_sla_minutes(window)
        session.flush()
        session.refresh(override)

    logger.info(
        "Window override set",
        plan_id=plan_id,
        date=day.isoformat(),
        window=f"{window.start_str()}-{window.end_str()}",
        job_updated=job is not None,
    )
    return override


def activate_due_trials(today: date | None = None, org_id: str | None = None) -> list[str]:
    """Promote every trial plan whose trial has ended. Returns the activated plan ids."""
    today = today or date.today()
    with get_session() as session:
        activated = [plan.id for plan in PlanRepository.trials_due(session, today, org_id) if refresh_trial_status(plan, today)]
    if activated:
        logger.info(f"[HORIZON] Activated {len(activated)} plan(s) whose trial ended")
    return activated


def resume_expired_pauses(today: date | None = None, org_id: str | None = None) -> list[str]:
    """Resume every paused plan whose paused_until date has been reached. Returns the resumed plan ids."""
    today = today or date.today()
    with get_session() as session:
        plans = PlanRepository.pauses_expired(session, today, org_id)
        for plan in plans:
            _resume(plan, today)
        resumed = [plan.id for plan in plans]
    if resumed:
        logger.info(f"[HORIZON] Resumed {len(resumed)} plan(s) whose pause ended")
    return resumed
