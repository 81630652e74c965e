"""Best-effort generation after plan create/resume.

Follow-ups never fail the request that scheduled them: every path runs the
work through run_generation_safely, which logs and swallows errors.
"""

import threading

from fastapi import BackgroundTasks
from loguru import logger

from app.config.settings import settings


def run_generation_safely(plan_id: str, horizon_days: int | None = None, org_id: str | None = None) -> None:
    """Generate jobs for a plan, logging instead of raising on failure."""
    from app.scheduling.generation import generate_for_plan

    try:
        result = generate_for_plan(plan_id, horizon_days, org_id=org_id)
        logger.info(f"[FOLLOWUP] Generation completed for plan_id={plan_id}: {result.message}")
    except Exception as e:
        logger.exception(f"[FOLLOWUP] Generation failed for plan_id={plan_id}: {e}")


def schedule_generation(
    plan_id: str,
    horizon_days: int | None = None,
    *,
    org_id: str | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> None:
    """Schedule follow-up generation for a plan.

    Uses FastAPI background tasks when called inside a request, the Celery
    worker when FOLLOWUPS_VIA_CELERY is set, and a daemon thread otherwise.
    """
    if background_tasks is not None:
        background_tasks.add_task(run_generation_safely, plan_id, horizon_days, org_id)
        logger.info(f"[FOLLOWUP] Generation scheduled via background_tasks for plan_id={plan_id}")
        return

    if settings.followups_via_celery:
        try:
            from app.scheduling.tasks import generate_plan_jobs_task

            result = generate_plan_jobs_task.delay(plan_id, horizon_days)
            logger.info(f"[FOLLOWUP] Generation task enqueued: task_id={result.id} for plan_id={plan_id}")
        except Exception as e:
            logger.exception(f"[FOLLOWUP] Failed to enqueue generation for plan_id={plan_id}: {e}")
        return

    thread = threading.Thread(target=run_generation_safely, args=(plan_id, horizon_days, org_id), daemon=True)
    thread.start()
    logger.info(f"[FOLLOWUP] Generation scheduled via thread for plan_id={plan_id}")
