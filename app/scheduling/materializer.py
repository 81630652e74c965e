"""Job materializer.

Decides which jobs are missing for a plan inside a date range and what
window and SLA each one gets. Pure: the caller loads overrides and existing
job dates, and persists the returned records.

Flow:
1. Clip the range to the plan validity (starts_on inclusive, ends_on exclusive)
2. Resolve occurrences for the clipped range
3. Drop dates that already have a job (any status, a skipped visit included)
4. Resolve each window: per-date override, else the plan default
5. SLA = max(min_sla_minutes, ceil(window minutes x multiplier))
"""

import math
from collections.abc import Collection, Mapping
from datetime import date, timedelta

from app.config.settings import settings
from app.scheduling.cadence import plan_anchor, resolve_occurrences
from app.scheduling.types import JobToCreate, MaterializationResult, PlanSnapshot, PlanStatus, TimeWindow

REASON_NOT_ACTIVE = "plan is not active"
REASON_NO_OCCURRENCES = "no occurrences in range"
REASON_NOTHING_NEW = "no new jobs to generate"


def compute_sla_minutes(
    window: TimeWindow,
    *,
    min_sla_minutes: int | None = None,
    multiplier: float | None = None,
) -> int:
    """SLA in minutes for a job with the given window."""
    floor = settings.min_sla_minutes if min_sla_minutes is None else min_sla_minutes
    factor = settings.sla_window_multiplier if multiplier is None else multiplier
    return max(floor, math.ceil(window.duration_minutes * factor))


def effective_range(plan: PlanSnapshot, range_start: date, range_end: date) -> tuple[date, date]:
    """Clip a range to the plan validity. The result may be empty (start > end)."""
    start = max(plan.validity_start or range_start, range_start)
    end = range_end
    if plan.validity_end is not None:
        end = min(plan.validity_end - timedelta(days=1), range_end)
    return start, end


def build_job(
    plan: PlanSnapshot,
    day: date,
    override: TimeWindow | None = None,
    *,
    min_sla_minutes: int | None = None,
    sla_multiplier: float | None = None,
) -> JobToCreate:
    """Job record for one occurrence: the override window if any, else the plan default."""
    window = override or plan.default_window
    window_start, window_end = window.on(day)
    return JobToCreate(
        plan_id=plan.plan_id,
        scheduled_date=day,
        window_start=window_start,
        window_end=window_end,
        sla_minutes=compute_sla_minutes(window, min_sla_minutes=min_sla_minutes, multiplier=sla_multiplier),
        overridden=override is not None,
    )


def materialize(
    plan: PlanSnapshot,
    overrides: Mapping[date, TimeWindow],
    existing_job_dates: Collection[date],
    range_start: date,
    range_end: date,
    *,
    min_sla_minutes: int | None = None,
    sla_multiplier: float | None = None,
) -> MaterializationResult:
    """Compute the jobs to create for a plan in [range_start, range_end].

    Args:
        plan: Plan snapshot
        overrides: Window overrides keyed by date
        existing_job_dates: Dates that already have a job for this plan
        range_start: Inclusive start
        range_end: Inclusive end

    Returns:
        MaterializationResult with jobs in ascending date order. Never raises for
        "nothing to generate"; the reason field explains an empty result.
    """
    if plan.status is not PlanStatus.ACTIVE:
        return MaterializationResult(jobs=[], latest_date=None, reason=REASON_NOT_ACTIVE)

    start, end = effective_range(plan, range_start, range_end)
    if start > end:
        return MaterializationResult(jobs=[], latest_date=None, reason=REASON_NO_OCCURRENCES)

    occurrences = resolve_occurrences(
        plan.cadence,
        plan_anchor(plan.cadence, plan.weekdays, plan.day_of_month),
        start,
        end,
        phase_anchor=plan.phase_anchor,
    )
    if not occurrences:
        return MaterializationResult(jobs=[], latest_date=None, reason=REASON_NO_OCCURRENCES)

    existing = set(existing_job_dates)
    jobs: list[JobToCreate] = []
    for occurrence in occurrences:
        if occurrence in existing:
            continue
        jobs.append(
            build_job(
                plan,
                occurrence,
                overrides.get(occurrence),
                min_sla_minutes=min_sla_minutes,
                sla_multiplier=sla_multiplier,
            )
        )

    return MaterializationResult(
        jobs=jobs,
        latest_date=occurrences[-1],
        reason=None if jobs else REASON_NOTHING_NEW,
    )
