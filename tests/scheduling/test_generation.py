"""Tests for single-plan job generation against an in-memory database.

Weekly Wednesday plan, today = Monday 2024-01-01, horizon 56 days:
range 2024-01-01..2024-02-26 holds 8 Wednesdays (Jan 3 .. Feb 21).
"""

from datetime import date, datetime

import pytest

from app.db.models import ServicePlanWindowOverride
from app.scheduling import lifecycle
from app.scheduling.errors import PlanNotFoundError
from app.scheduling.generation import generate_for_plan
from app.scheduling.repository import JobRepository
from app.scheduling.types import Cadence, JobStatus, JobToCreate, PlanSnapshot, PlanStatus

TODAY = date(2024, 1, 1)


def test_generates_every_occurrence_in_horizon(make_plan, jobs_for):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))

    result = generate_for_plan(plan.id, 56, today=TODAY)

    assert result.count == 8
    assert result.message == "Generated 8 jobs"
    jobs = jobs_for(plan.id)
    assert [job.scheduled_date for job in jobs][:2] == [date(2024, 1, 3), date(2024, 1, 10)]
    assert jobs[-1].scheduled_date == date(2024, 2, 21)
    assert all(job.status == JobStatus.SCHEDULED.value for job in jobs)
    assert jobs[0].window_start == datetime(2024, 1, 3, 9, 0)
    assert jobs[0].sla_minutes == 180
    assert jobs[0].site_id == plan.site_id
    assert plan.last_generated_through == date(2024, 2, 21)


def test_second_run_is_idempotent(make_plan, jobs_for):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))

    first = generate_for_plan(plan.id, 56, today=TODAY)
    second = generate_for_plan(plan.id, 56, today=TODAY)

    assert first.count > 0
    assert second.count == 0
    assert second.message == "No new jobs to generate"
    assert len(jobs_for(plan.id)) == first.count


def test_longer_horizon_only_adds_the_tail(make_plan):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))

    generate_for_plan(plan.id, 56, today=TODAY)
    extended = generate_for_plan(plan.id, 70, today=TODAY)

    # Feb 28 and Mar 6 fall in 2024-02-27..2024-03-11
    assert extended.count == 2


@pytest.mark.parametrize("status", [PlanStatus.PAUSED, PlanStatus.CANCELLED])
def test_inactive_plan_generates_nothing(make_plan, jobs_for, status):
    plan = make_plan(status=status, next_occurrence_anchor=date(2024, 1, 3))

    result = generate_for_plan(plan.id, 56, today=TODAY)

    assert result.count == 0
    assert result.message == "Plan is not active"
    assert jobs_for(plan.id) == []


def test_paused_plan_reports_not_active(make_plan):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))
    lifecycle.pause_plan(plan.id)

    result = generate_for_plan(plan.id, today=TODAY)

    assert (result.count, result.message) == (0, "Plan is not active")


def test_skip_advances_anchor_and_date_is_not_recreated(make_plan, jobs_for):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))
    generate_for_plan(plan.id, 56, today=TODAY)

    plan, skipped = lifecycle.skip_next(plan.id, today=TODAY)

    assert skipped.scheduled_date == date(2024, 1, 3)
    assert skipped.status == JobStatus.CANCELLED.value
    assert plan.next_occurrence_anchor == date(2024, 1, 10)

    again = generate_for_plan(plan.id, 56, today=TODAY)
    assert again.count == 0
    on_skipped_date = [job for job in jobs_for(plan.id) if job.scheduled_date == date(2024, 1, 3)]
    assert len(on_skipped_date) == 1
    assert on_skipped_date[0].status == JobStatus.CANCELLED.value


def test_skip_ahead_of_generation_records_a_cancelled_job(make_plan, jobs_for):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))

    plan, skipped = lifecycle.skip_next(plan.id, today=TODAY)
    result = generate_for_plan(plan.id, 56, today=TODAY)

    assert skipped.scheduled_date == date(2024, 1, 3)
    assert skipped.status == JobStatus.CANCELLED.value
    assert skipped.cancel_reason == lifecycle.SKIPPED_JOB_REASON
    assert skipped.window_start == datetime(2024, 1, 3, 9, 0)
    assert plan.next_occurrence_anchor == date(2024, 1, 10)
    assert result.count == 7
    assert jobs_for(plan.id, JobStatus.SCHEDULED)[0].scheduled_date == date(2024, 1, 10)


def test_skip_on_twice_weekly_plan_keeps_the_other_weekly_visit(make_plan, jobs_for):
    plan = make_plan(frequency=Cadence.TWICE_WEEKLY, anchor_weekdays="mon,thu", next_occurrence_anchor=TODAY)

    plan, skipped = lifecycle.skip_next(plan.id, today=TODAY)
    result = generate_for_plan(plan.id, 14, today=TODAY)

    assert skipped.scheduled_date == TODAY
    assert plan.next_occurrence_anchor == date(2024, 1, 8)
    assert result.count == 4
    assert [job.scheduled_date for job in jobs_for(plan.id, JobStatus.SCHEDULED)] == [
        date(2024, 1, 4),
        date(2024, 1, 8),
        date(2024, 1, 11),
        date(2024, 1, 15),
    ]
    assert [job.scheduled_date for job in jobs_for(plan.id, JobStatus.CANCELLED)] == [TODAY]


def test_consecutive_skips_on_twice_weekly_plan_skip_consecutive_visits(make_plan, jobs_for):
    plan = make_plan(frequency=Cadence.TWICE_WEEKLY, anchor_weekdays="mon,thu", next_occurrence_anchor=TODAY)

    lifecycle.skip_next(plan.id, today=TODAY)
    plan, second = lifecycle.skip_next(plan.id, today=TODAY)
    generate_for_plan(plan.id, 14, today=TODAY)

    assert second.scheduled_date == date(2024, 1, 4)
    assert [job.scheduled_date for job in jobs_for(plan.id, JobStatus.SCHEDULED)] == [
        date(2024, 1, 8),
        date(2024, 1, 11),
        date(2024, 1, 15),
    ]


def test_skip_on_twice_monthly_plan_keeps_the_mid_month_visit(make_plan, jobs_for):
    plan = make_plan(
        frequency=Cadence.TWICE_MONTHLY,
        anchor_weekdays=None,
        anchor_day_of_month=5,
        next_occurrence_anchor=date(2024, 1, 5),
    )

    plan, skipped = lifecycle.skip_next(plan.id, today=TODAY)
    result = generate_for_plan(plan.id, 60, today=TODAY)

    assert skipped.scheduled_date == date(2024, 1, 5)
    assert plan.next_occurrence_anchor == date(2024, 2, 5)
    assert result.count == 3
    assert [job.scheduled_date for job in jobs_for(plan.id, JobStatus.SCHEDULED)] == [
        date(2024, 1, 15),
        date(2024, 2, 5),
        date(2024, 2, 15),
    ]


def test_skip_after_generation_on_twice_weekly_plan_cancels_one_job(make_plan, jobs_for):
    plan = make_plan(frequency=Cadence.TWICE_WEEKLY, anchor_weekdays="mon,thu", next_occurrence_anchor=TODAY)
    generate_for_plan(plan.id, 14, today=TODAY)

    plan, skipped = lifecycle.skip_next(plan.id, today=TODAY)
    again = generate_for_plan(plan.id, 14, today=TODAY)

    assert skipped.scheduled_date == TODAY
    assert again.count == 0
    assert len(jobs_for(plan.id, JobStatus.SCHEDULED)) == 4
    assert len(jobs_for(plan.id, JobStatus.CANCELLED)) == 1


def test_zero_horizon_covers_only_today(make_plan, jobs_for):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))

    result = generate_for_plan(plan.id, 0, today=date(2024, 1, 3))

    assert result.count == 1
    assert [job.scheduled_date for job in jobs_for(plan.id)] == [date(2024, 1, 3)]


def test_missing_anchor_is_computed(make_plan):
    plan = make_plan(next_occurrence_anchor=None)

    generate_for_plan(plan.id, 56, today=TODAY)

    assert plan.next_occurrence_anchor == date(2024, 1, 3)


def test_stale_anchor_rolls_forward(make_plan, jobs_for):
    plan = make_plan(next_occurrence_anchor=date(2023, 12, 27))

    result = generate_for_plan(plan.id, 14, today=date(2024, 1, 8))

    assert plan.next_occurrence_anchor == date(2024, 1, 10)
    assert result.count == 2
    assert [job.scheduled_date for job in jobs_for(plan.id)] == [date(2024, 1, 10), date(2024, 1, 17)]


def test_biweekly_keeps_its_phase(make_plan, jobs_for):
    plan = make_plan(frequency=Cadence.BIWEEKLY, next_occurrence_anchor=date(2024, 1, 10))

    generate_for_plan(plan.id, 37, today=TODAY)

    assert [job.scheduled_date for job in jobs_for(plan.id)] == [
        date(2024, 1, 10),
        date(2024, 1, 24),
        date(2024, 2, 7),
    ]


def test_validity_end_is_respected(make_plan, jobs_for):
    plan = make_plan(ends_on=date(2024, 1, 17), next_occurrence_anchor=date(2024, 1, 3))

    result = generate_for_plan(plan.id, 56, today=TODAY)

    assert result.count == 2
    assert [job.scheduled_date for job in jobs_for(plan.id)] == [date(2024, 1, 3), date(2024, 1, 10)]


def test_window_override_is_applied(make_plan, jobs_for, db_session):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))
    db_session.add(
        ServicePlanWindowOverride(
            org_id=plan.org_id,
            plan_id=plan.id,
            override_date=date(2024, 1, 10),
            window_start="13:00",
            window_end="14:00",
        )
    )
    db_session.flush()

    generate_for_plan(plan.id, 14, today=TODAY)

    by_date = {job.scheduled_date: job for job in jobs_for(plan.id)}
    assert by_date[date(2024, 1, 10)].window_start == datetime(2024, 1, 10, 13, 0)
    assert by_date[date(2024, 1, 10)].sla_minutes == 120
    assert by_date[date(2024, 1, 3)].window_start == datetime(2024, 1, 3, 9, 0)


def test_ended_trial_is_activated_and_generates(make_plan):
    plan = make_plan(status=PlanStatus.TRIAL, trial_ends_at=date(2024, 1, 1), next_occurrence_anchor=date(2024, 1, 3))

    result = generate_for_plan(plan.id, 56, today=TODAY)

    assert plan.status == PlanStatus.ACTIVE.value
    assert result.count == 8


def test_running_trial_generates_nothing(make_plan):
    plan = make_plan(status=PlanStatus.TRIAL, trial_ends_at=date(2024, 1, 15))

    result = generate_for_plan(plan.id, 56, today=TODAY)

    assert result.message == "Plan is not active"
    assert plan.status == PlanStatus.TRIAL.value


def test_unknown_plan_raises(db_session):
    with pytest.raises(PlanNotFoundError):
        generate_for_plan("missing", today=TODAY)


def test_plan_outside_org_scope_is_not_found(make_plan):
    plan = make_plan(org_id="org-1")
    with pytest.raises(PlanNotFoundError):
        generate_for_plan(plan.id, org_id="org-2", today=TODAY)


def test_concurrent_insert_of_same_date_is_absorbed(make_plan, db_session, jobs_for):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))
    snapshot = PlanSnapshot.from_model(plan)
    job = JobToCreate(
        plan_id=plan.id,
        scheduled_date=date(2024, 1, 3),
        window_start=datetime(2024, 1, 3, 9, 0),
        window_end=datetime(2024, 1, 3, 11, 0),
        sla_minutes=180,
    )

    assert JobRepository.create(db_session, snapshot, job) is True
    assert JobRepository.create(db_session, snapshot, job) is False
    assert len(jobs_for(plan.id)) == 1
