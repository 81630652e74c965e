"""Single-plan job generation.

generate_for_plan is the unit of work behind the per-plan endpoint, the
post-create/resume follow-up and each iteration of the horizon sweep:

1. Load the plan in the caller's org scope (PlanNotFoundError otherwise)
2. Promote an ended trial to active
3. Gate on status: anything but active returns "Plan is not active"
4. Roll next_occurrence_anchor forward if it is in the past
5. Materialize [today, today + horizon]; dates that already have a job, skipped
   visits included, are left alone
6. Insert jobs in ascending date order; the (plan_id, scheduled_date)
   constraint absorbs races with concurrent runs
"""

from datetime import date, timedelta

from loguru import logger

from app.config.settings import settings
from app.db.models import ServicePlan
from app.db.session import get_session
from app.scheduling.cadence import (
    NEXT_OCCURRENCE_LOOKAHEAD_DAYS,
    first_occurrence_on_or_after,
    plan_anchor,
    resolve_occurrences,
)
from app.scheduling.materializer import REASON_NOT_ACTIVE, REASON_NOTHING_NEW, materialize
from app.scheduling.repository import JobRepository, PlanRepository, WindowOverrideRepository
from app.scheduling.transitions import refresh_trial_status
from app.scheduling.types import Cadence, GenerationResult, PlanSnapshot, PlanStatus, parse_weekdays


def first_plan_occurrence(plan: ServicePlan, on_or_after: date) -> date | None:
    """First occurrence of the plan's cadence at or after a date, within validity.

    The current anchor is passed as phase reference so biweekly plans keep
    their rhythm when the anchor is recomputed.
    """
    cadence = Cadence.parse(plan.frequency)
    start = max(on_or_after, plan.starts_on) if plan.starts_on else on_or_after
    occurrence = first_occurrence_on_or_after(
        cadence,
        plan_anchor(cadence, parse_weekdays(plan.anchor_weekdays), plan.anchor_day_of_month),
        start,
        phase_anchor=plan.next_occurrence_anchor,
    )
    if occurrence is not None and plan.ends_on is not None and occurrence >= plan.ends_on:
        return None
    return occurrence


def roll_anchor_forward(plan: ServicePlan, today: date) -> date | None:
    """Move a stale next_occurrence_anchor to the first occurrence at or after today."""
    anchor = plan.next_occurrence_anchor
    if anchor is not None and anchor >= today:
        return anchor
    plan.next_occurrence_anchor = first_plan_occurrence(plan, today)
    if plan.next_occurrence_anchor != anchor:
        logger.debug(
            "Anchor rolled forward",
            plan_id=plan.id,
            previous=anchor.isoformat() if anchor else None,
            anchor=plan.next_occurrence_anchor.isoformat() if plan.next_occurrence_anchor else None,
        )
    return plan.next_occurrence_anchor


def next_open_occurrence(session, plan: ServicePlan, today: date) -> date | None:
    """First occurrence at or after today, within validity, with no job row of any status."""
    cadence = Cadence.parse(plan.frequency)
    start = max(today, plan.starts_on) if plan.starts_on else today
    end = start + timedelta(days=NEXT_OCCURRENCE_LOOKAHEAD_DAYS)
    taken = JobRepository.dates_in_range(session, plan.id, start, end)
    occurrences = resolve_occurrences(
        cadence,
        plan_anchor(cadence, parse_weekdays(plan.anchor_weekdays), plan.anchor_day_of_month),
        start,
        end,
        phase_anchor=plan.next_occurrence_anchor,
    )
    for occurrence in occurrences:
        if plan.ends_on is not None and occurrence >= plan.ends_on:
            return None
        if occurrence not in taken:
            return occurrence
    return None


def _message(count: int, reason: str | None) -> str:
    if count:
        return f"Generated {count} job{'s' if count != 1 else ''}"
    return (reason or REASON_NOTHING_NEW).capitalize()


def generate_for_plan(
    plan_id: str,
    horizon_days: int | None = None,
    *,
    org_id: str | None = None,
    today: date | None = None,
) -> GenerationResult:
    """Materialize missing jobs for one plan up to the horizon.

    Args:
        plan_id: Plan to generate for
        horizon_days: Days ahead of today to cover (default: settings.default_horizon_days)
        org_id: Org scope; None only for trusted internal callers (sweep, follow-ups)
        today: Reference date (default: date.today())

    Returns:
        GenerationResult with the number of jobs created and a human-readable message

    Raises:
        PlanNotFoundError: If the plan does not exist in scope
    """
    today = today or date.today()
    horizon = settings.default_horizon_days if horizon_days is None else horizon_days

    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        refresh_trial_status(plan, today)

        if plan.status != PlanStatus.ACTIVE.value:
            logger.info("Generation skipped, plan is not active", plan_id=plan_id, status=plan.status)
            return GenerationResult(count=0, message=_message(0, REASON_NOT_ACTIVE))

        roll_anchor_forward(plan, today)
        snapshot = PlanSnapshot.from_model(plan)
        range_end = today + timedelta(days=horizon)

        result = materialize(
            snapshot,
            WindowOverrideRepository.windows_in_range(session, plan.id, today, range_end),
            JobRepository.dates_in_range(session, plan.id, today, range_end),
            today,
            range_end,
        )

        created = 0
        for job in result.jobs:
            if JobRepository.create(session, snapshot, job):
                created += 1

        if result.latest_date is not None and (
            plan.last_generated_through is None or result.latest_date > plan.last_generated_through
        ):
            plan.last_generated_through = result.latest_date

        logger.info(
            "Jobs generated",
            plan_id=plan_id,
            count=created,
            range_start=today.isoformat(),
            range_end=range_end.isoformat(),
            reason=result.reason,
        )
        return GenerationResult(count=created, message=_message(created, result.reason))
