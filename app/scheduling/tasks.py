import time

from loguru import logger

from app.celery_app import celery_app
from app.scheduling.generation import generate_for_plan
from app.scheduling.orchestrator import generate_for_all_active_plans


@celery_app.task(
    autoretry_for=(ConnectionError,),
    retry_backoff=60,
    retry_kwargs={"max_retries": 5},
)
def generate_plan_jobs_task(plan_id: str, horizon_days: int | None = None) -> dict:
    """Generate jobs for one plan."""
    task_start = time.time()
    logger.info(f"[CELERY] Generation task STARTED for plan_id={plan_id}")
    result = generate_for_plan(plan_id, horizon_days)
    elapsed = time.time() - task_start
    logger.info(f"[CELERY] Generation completed for plan_id={plan_id} in {elapsed:.2f}s: {result.message}")
    return {"count": result.count, "message": result.message}


@celery_app.task(
    autoretry_for=(ConnectionError,),
    retry_backoff=300,
    retry_kwargs={"max_retries": 3},
)
def horizon_sweep_task(horizon_days: int | None = None) -> dict:
    """Horizon sweep over all active plans of all orgs."""
    task_start = time.time()
    logger.info("[CELERY] Horizon sweep task STARTED")
    result = generate_for_all_active_plans(horizon_days=horizon_days)
    elapsed = time.time() - task_start
    logger.info(f"[CELERY] Horizon sweep completed in {elapsed:.2f}s")
    return {
        "plans_processed": result.plans_processed,
        "jobs_generated": result.jobs_generated,
        "failures": [failure.plan_id for failure in result.failures],
    }
