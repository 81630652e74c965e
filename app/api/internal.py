"""Internal endpoints for external schedulers (cron)."""

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from app.api.dependencies.scope import require_cron_secret
from app.scheduling.orchestrator import generate_for_all_active_plans
from app.schemas.service_plans import GenerateRequest, PartialFailureResponse, SweepResponse

router = APIRouter(prefix="/internal/cron", tags=["internal"])


@router.post("/generate-jobs", response_model=SweepResponse, dependencies=[Depends(require_cron_secret)])
def cron_generate_jobs(request: GenerateRequest | None = None) -> SweepResponse:
    """Run the horizon sweep across all orgs.

    Per-plan failures are reported in `failures`; only an error outside the
    per-plan loop fails the call.
    """
    logger.info("[HORIZON] Cron-triggered job generation")
    try:
        result = generate_for_all_active_plans(horizon_days=request.horizon_days if request else None)
    except Exception as e:
        logger.exception("[HORIZON] Cron-triggered job generation failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Job generation failed",
        ) from e
    return SweepResponse(
        plans_processed=result.plans_processed,
        jobs_generated=result.jobs_generated,
        failures=[
            PartialFailureResponse(plan_id=f.plan_id, error_type=f.error_type, message=f.message)
            for f in result.failures
        ],
    )
