"""Tests for the plan calendar view."""

from datetime import date, time

import pytest

from app.db.models import ServicePlanWindowOverride
from app.scheduling.calendar_view import get_plan_calendar
from app.scheduling.errors import PlanNotFoundError
from app.scheduling.generation import generate_for_plan
from app.scheduling.lifecycle import skip_next
from app.scheduling.types import JobStatus, PlanStatus


def test_calendar_lists_occurrences_with_jobs(make_plan):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))
    generate_for_plan(plan.id, 7, today=date(2024, 1, 1))

    calendar = get_plan_calendar(plan.id, date(2024, 1, 1), date(2024, 1, 21), org_id="org-1")

    assert [o.scheduled_date for o in calendar.occurrences] == [date(2024, 1, 3), date(2024, 1, 10), date(2024, 1, 17)]
    first, second, _ = calendar.occurrences
    assert first.job_status == JobStatus.SCHEDULED.value
    assert first.job_id == calendar.jobs[0].id
    assert second.job_id is None
    assert first.window.start == time(9, 0)
    assert not first.overridden


def test_calendar_shows_overrides_and_skipped_dates(make_plan, db_session):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))
    db_session.add(
        ServicePlanWindowOverride(
            org_id="org-1", plan_id=plan.id, override_date=date(2024, 1, 10), window_start="14:00", window_end="15:00"
        )
    )
    db_session.flush()
    generate_for_plan(plan.id, 14, today=date(2024, 1, 1))
    skip_next(plan.id, today=date(2024, 1, 1))

    calendar = get_plan_calendar(plan.id, date(2024, 1, 1), date(2024, 1, 14), org_id="org-1")

    by_date = {o.scheduled_date: o for o in calendar.occurrences}
    assert by_date[date(2024, 1, 3)].job_status == JobStatus.CANCELLED.value
    assert by_date[date(2024, 1, 10)].overridden
    assert by_date[date(2024, 1, 10)].window.start == time(14, 0)


def test_calendar_ignores_status_but_respects_validity(make_plan):
    plan = make_plan(status=PlanStatus.PAUSED, ends_on=date(2024, 1, 10))

    calendar = get_plan_calendar(plan.id, date(2024, 1, 1), date(2024, 1, 31), org_id="org-1")

    assert [o.scheduled_date for o in calendar.occurrences] == [date(2024, 1, 3)]
    assert calendar.jobs == []


def test_calendar_is_org_scoped(make_plan):
    plan = make_plan(org_id="org-1")
    with pytest.raises(PlanNotFoundError):
        get_plan_calendar(plan.id, date(2024, 1, 1), date(2024, 1, 31), org_id="org-2")


@pytest.mark.parametrize(
    ("start", "end"),
    [
        (date(2024, 2, 1), date(2024, 1, 1)),
        (date(2024, 1, 1), date(2025, 6, 1)),
    ],
)
def test_calendar_rejects_bad_ranges(make_plan, start, end):
    plan = make_plan()
    with pytest.raises(ValueError):
        get_plan_calendar(plan.id, start, end, org_id="org-1")
