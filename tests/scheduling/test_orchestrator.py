"""Tests for the horizon sweep across plans."""

from datetime import date

from app.scheduling import orchestrator
from app.scheduling.errors import PlanNotFoundError
from app.scheduling.generation import generate_for_plan
from app.scheduling.types import PlanStatus

TODAY = date(2024, 1, 1)


def test_sweep_generates_for_every_active_plan(make_plan, jobs_for):
    first = make_plan(org_id="org-1", next_occurrence_anchor=date(2024, 1, 3))
    second = make_plan(org_id="org-2", anchor_weekdays="fri", next_occurrence_anchor=date(2024, 1, 5))
    make_plan(org_id="org-1", status=PlanStatus.PAUSED)
    make_plan(org_id="org-1", status=PlanStatus.CANCELLED)

    result = orchestrator.generate_for_all_active_plans(horizon_days=14, today=TODAY)

    assert result.plans_processed == 2
    assert result.jobs_generated == 4
    assert result.failures == []
    assert len(jobs_for(first.id)) == 2
    assert len(jobs_for(second.id)) == 2


def test_sweep_is_idempotent(make_plan):
    make_plan(next_occurrence_anchor=date(2024, 1, 3))

    orchestrator.generate_for_all_active_plans(horizon_days=14, today=TODAY)
    again = orchestrator.generate_for_all_active_plans(horizon_days=14, today=TODAY)

    assert again.plans_processed == 1
    assert again.jobs_generated == 0


def test_sweep_can_be_scoped_to_one_org(make_plan, jobs_for):
    mine = make_plan(org_id="org-1", next_occurrence_anchor=date(2024, 1, 3))
    other = make_plan(org_id="org-2", next_occurrence_anchor=date(2024, 1, 3))

    result = orchestrator.generate_for_all_active_plans(org_id="org-1", horizon_days=14, today=TODAY)

    assert result.plans_processed == 1
    assert len(jobs_for(mine.id)) == 2
    assert jobs_for(other.id) == []


def test_failing_plan_does_not_stop_the_sweep(make_plan, jobs_for, monkeypatch):
    broken = make_plan(next_occurrence_anchor=date(2024, 1, 3))
    healthy = make_plan(next_occurrence_anchor=date(2024, 1, 3))

    def flaky_generate(plan_id, horizon_days=None, **kwargs):
        if plan_id == broken.id:
            raise PlanNotFoundError(plan_id)
        return generate_for_plan(plan_id, horizon_days, **kwargs)

    monkeypatch.setattr("app.scheduling.orchestrator.generate_for_plan", flaky_generate)

    result = orchestrator.generate_for_all_active_plans(horizon_days=14, today=TODAY)

    assert result.plans_processed == 2
    assert result.jobs_generated == 2
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.plan_id == broken.id
    assert failure.error_type == "PlanNotFoundError"
    assert "PLAN_NOT_FOUND" in failure.message
    assert len(jobs_for(healthy.id)) == 2


def test_sweep_resumes_expired_pauses_and_activates_ended_trials(make_plan, jobs_for):
    paused = make_plan(status=PlanStatus.PAUSED, paused_until=TODAY, next_occurrence_anchor=date(2023, 12, 27))
    trial = make_plan(status=PlanStatus.TRIAL, trial_ends_at=TODAY)

    result = orchestrator.generate_for_all_active_plans(horizon_days=14, today=TODAY)

    assert result.plans_processed == 2
    assert paused.status == PlanStatus.ACTIVE.value
    assert trial.status == PlanStatus.ACTIVE.value
    assert [job.scheduled_date for job in jobs_for(paused.id)] == [date(2024, 1, 3), date(2024, 1, 10)]


def test_horizon_tick_never_raises(monkeypatch):
    calls = []

    def boom(*args, **kwargs):
        calls.append(args)
        raise RuntimeError("database unavailable")

    monkeypatch.setattr("app.scheduling.orchestrator.generate_for_all_active_plans", boom)

    orchestrator.horizon_tick()

    assert calls == [()]


def test_sweep_with_zero_horizon_covers_only_today(make_plan, jobs_for):
    plan = make_plan(next_occurrence_anchor=date(2024, 1, 3))

    result = orchestrator.generate_for_all_active_plans(horizon_days=0, today=date(2024, 1, 3))

    assert result.jobs_generated == 1
    assert [job.scheduled_date for job in jobs_for(plan.id)] == [date(2024, 1, 3)]
