"""Calendar view of a plan: resolver occurrences next to materialized jobs."""

from dataclasses import dataclass, field
from datetime import date

from app.db.models import Job
from app.db.session import get_session
from app.scheduling.cadence import plan_anchor, resolve_occurrences
from app.scheduling.materializer import effective_range
from app.scheduling.repository import JobRepository, PlanRepository, WindowOverrideRepository
from app.scheduling.types import PlanSnapshot, TimeWindow

MAX_CALENDAR_DAYS = 366


@dataclass(frozen=True)
class CalendarOccurrence:
    scheduled_date: date
    window: TimeWindow
    overridden: bool
    job_id: str | None = None
    job_status: str | None = None


@dataclass
class PlanCalendar:
    plan_id: str
    range_start: date
    range_end: date
    occurrences: list[CalendarOccurrence] = field(default_factory=list)
    jobs: list[Job] = field(default_factory=list)


def get_plan_calendar(plan_id: str, range_start: date, range_end: date, *, org_id: str) -> PlanCalendar:
    """Occurrences the plan's cadence produces in [range_start, range_end] plus the jobs already there.

    Occurrences ignore status (a paused plan still shows its rhythm) but respect
    the validity range. Each occurrence carries its effective window and the
    job materialized on that date, if any.

    Raises:
        PlanNotFoundError: If the plan does not exist in the org
        ValueError: If the range is inverted or longer than a year
    """
    if range_end < range_start:
        raise ValueError("range end must not be before range start")
    if (range_end - range_start).days > MAX_CALENDAR_DAYS:
        raise ValueError(f"calendar range must not exceed {MAX_CALENDAR_DAYS} days")

    with get_session() as session:
        plan = PlanRepository.get(session, plan_id, org_id)
        snapshot = PlanSnapshot.from_model(plan)
        overrides = WindowOverrideRepository.windows_in_range(session, plan.id, range_start, range_end)
        jobs = JobRepository.list_in_range(session, plan.id, range_start, range_end)

    jobs_by_date = {job.scheduled_date: job for job in jobs}
    start, end = effective_range(snapshot, range_start, range_end)
    dates = resolve_occurrences(
        snapshot.cadence,
        plan_anchor(snapshot.cadence, snapshot.weekdays, snapshot.day_of_month),
        start,
        end,
        phase_anchor=snapshot.phase_anchor,
    )

    calendar = PlanCalendar(plan_id=plan_id, range_start=range_start, range_end=range_end, jobs=jobs)
    for day in dates:
        job = jobs_by_date.get(day)
        calendar.occurrences.append(
            CalendarOccurrence(
                scheduled_date=day,
                window=overrides.get(day, snapshot.default_window),
                overridden=day in overrides,
                job_id=job.id if job else None,
                job_status=job.status if job else None,
            )
        )
    return calendar
