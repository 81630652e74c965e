"""Horizon sweep across active plans.

Runs sequentially, one session per plan, so a failing plan neither aborts
the sweep nor rolls back jobs already created for other plans.
"""

from datetime import date

from loguru import logger

from app.config.settings import settings
from app.db.session import get_session
from app.scheduling.generation import generate_for_plan
from app.scheduling.lifecycle import activate_due_trials, resume_expired_pauses
from app.scheduling.repository import PlanRepository
from app.scheduling.types import MaterializationPartialFailure, SweepResult


def generate_for_all_active_plans(
    org_id: str | None = None,
    horizon_days: int | None = None,
    today: date | None = None,
) -> SweepResult:
    """Materialize jobs for every active plan in scope.

    Ended trials are activated and expired pauses resumed first, so those
    plans are included in the same run.

    Args:
        org_id: Restrict the sweep to one org; None sweeps every org
        horizon_days: Days ahead to cover (default: settings.default_horizon_days)
        today: Reference date (default: date.today())

    Returns:
        SweepResult with counts and one MaterializationPartialFailure per failed plan
    """
    today = today or date.today()
    horizon = settings.default_horizon_days if horizon_days is None else horizon_days
    logger.info(f"[HORIZON] Starting job generation (horizon: {horizon} days, org_id={org_id or 'all'})")

    activate_due_trials(today, org_id)
    resume_expired_pauses(today, org_id)

    with get_session() as session:
        plan_ids = PlanRepository.active_plan_ids(session, org_id)

    result = SweepResult()
    for plan_id in plan_ids:
        result.plans_processed += 1
        try:
            generated = generate_for_plan(plan_id, horizon, today=today)
            result.jobs_generated += generated.count
        except Exception as e:
            logger.exception(f"[HORIZON] Generation failed for plan_id={plan_id}: {e}")
            result.failures.append(
                MaterializationPartialFailure(plan_id=plan_id, error_type=type(e).__name__, message=str(e))
            )

    logger.info(
        f"[HORIZON] Job generation complete: {result.plans_processed} plans processed, "
        f"{result.jobs_generated} jobs generated, {len(result.failures)} failed"
    )
    return result


def horizon_tick() -> None:
    """Run one sweep from the in-process scheduler or the Celery worker."""
    try:
        generate_for_all_active_plans()
    except Exception as e:
        logger.exception(f"[HORIZON] Sweep failed: {e}")
