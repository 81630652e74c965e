"""Service plan API endpoints.

CRUD, lifecycle transitions (pause, resume, skip-next, cancel, billed), per-date
window overrides, calendar preview and on-demand job generation. Every
route is scoped to the organization in the X-Org-Id header.
"""

from datetime import date, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response, status
from loguru import logger

from app.api.dependencies.scope import get_org_id
from app.config.settings import settings
from app.scheduling import lifecycle
from app.scheduling.calendar_view import get_plan_calendar
from app.scheduling.errors import (
    InvalidCadenceConfigError,
    PlanNotFoundError,
    SchedulingError,
    StaleStateError,
    TemplateNotFoundError,
)
from app.scheduling.generation import generate_for_plan
from app.scheduling.orchestrator import generate_for_all_active_plans
from app.scheduling.types import ServicePlanCreate, ServicePlanUpdate
from app.schemas.service_plans import (
    CalendarOccurrenceResponse,
    CancelPlanRequest,
    GenerateRequest,
    GenerateResponse,
    JobResponse,
    OverrideWindowRequest,
    PartialFailureResponse,
    PausePlanRequest,
    PlanCalendarResponse,
    RecordBillingRequest,
    ServicePlanFromTemplate,
    ServicePlanListResponse,
    ServicePlanResponse,
    SkipNextResponse,
    SweepResponse,
    WindowOverrideResponse,
)

router = APIRouter(prefix="/service-plans", tags=["service-plans"])


def _http_error(e: SchedulingError) -> HTTPException:
    """Map a scheduling error to its HTTP status with the error code and details."""
    if isinstance(e, (PlanNotFoundError, TemplateNotFoundError)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, InvalidCadenceConfigError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, StaleStateError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(
        status_code=status_code,
        detail={"code": e.code, "message": e.message, "details": e.details},
    )


@router.get("", response_model=ServicePlanListResponse)
def list_service_plans(
    org_id: str = Depends(get_org_id),
    site_id: str | None = Query(None, description="Only plans for this site"),
    active: bool | None = Query(None, description="true: active only, false: everything else"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
) -> ServicePlanListResponse:
    plans, total = lifecycle.list_plans(org_id, site_id=site_id, active=active, page=page, limit=limit)
    return ServicePlanListResponse(
        items=[ServicePlanResponse.model_validate(plan) for plan in plans],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("", response_model=ServicePlanResponse, status_code=status.HTTP_201_CREATED)
def create_service_plan(
    request: ServicePlanCreate,
    background_tasks: BackgroundTasks,
    org_id: str = Depends(get_org_id),
) -> ServicePlanResponse:
    """Create a service plan; the first horizon of jobs is generated in the background."""
    logger.info("Create service plan requested", org_id=org_id, site_id=request.site_id, frequency=request.frequency)
    try:
        plan = lifecycle.create_plan(org_id, request, background_tasks=background_tasks)
    except SchedulingError as e:
        raise _http_error(e) from e
    return ServicePlanResponse.model_validate(plan)


@router.post("/from-template/{template_id}", response_model=ServicePlanResponse, status_code=status.HTTP_201_CREATED)
def create_service_plan_from_template(
    template_id: str,
    request: ServicePlanFromTemplate,
    background_tasks: BackgroundTasks,
    org_id: str = Depends(get_org_id),
) -> ServicePlanResponse:
    try:
        plan = lifecycle.create_plan_from_template(
            org_id,
            template_id,
            request.model_dump(exclude_unset=True),
            background_tasks=background_tasks,
        )
    except SchedulingError as e:
        raise _http_error(e) from e
    except ValueError as e:
        # Merged template + request failed model validation
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return ServicePlanResponse.model_validate(plan)


@router.post("/generate", response_model=SweepResponse)
def generate_jobs_for_org(
    request: GenerateRequest | None = None,
    org_id: str = Depends(get_org_id),
) -> SweepResponse:
    """Generate jobs for every active plan of the org."""
    horizon_days = request.horizon_days if request else None
    result = generate_for_all_active_plans(org_id=org_id, horizon_days=horizon_days)
    return SweepResponse(
        plans_processed=result.plans_processed,
        jobs_generated=result.jobs_generated,
        failures=[
            PartialFailureResponse(plan_id=f.plan_id, error_type=f.error_type, message=f.message)
            for f in result.failures
        ],
    )


@router.get("/{plan_id}", response_model=ServicePlanResponse)
def get_service_plan(plan_id: str, org_id: str = Depends(get_org_id)) -> ServicePlanResponse:
    try:
        plan = lifecycle.get_plan(plan_id, org_id=org_id)
    except SchedulingError as e:
        raise _http_error(e) from e
    return ServicePlanResponse.model_validate(plan)


@router.patch("/{plan_id}", response_model=ServicePlanResponse)
def update_service_plan(
    plan_id: str,
    request: ServicePlanUpdate,
    org_id: str = Depends(get_org_id),
) -> ServicePlanResponse:
    try:
        plan = lifecycle.update_plan(plan_id, request, org_id=org_id)
    except SchedulingError as e:
        raise _http_error(e) from e
    return ServicePlanResponse.model_validate(plan)


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service_plan(plan_id: str, org_id: str = Depends(get_org_id)) -> Response:
    try:
        lifecycle.delete_plan(plan_id, org_id=org_id)
    except SchedulingError as e:
        raise _http_error(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{plan_id}/pause", response_model=ServicePlanResponse)
def pause_service_plan(
    plan_id: str,
    request: PausePlanRequest | None = None,
    org_id: str = Depends(get_org_id),
) -> ServicePlanResponse:
    try:
        plan = lifecycle.pause_plan(plan_id, org_id=org_id, until=request.until if request else None)
    except SchedulingError as e:
        raise _http_error(e) from e
    return ServicePlanResponse.model_validate(plan)


@router.post("/{plan_id}/resume", response_model=ServicePlanResponse)
def resume_service_plan(
    plan_id: str,
    background_tasks: BackgroundTasks,
    org_id: str = Depends(get_org_id),
) -> ServicePlanResponse:
    try:
        plan = lifecycle.resume_plan(plan_id, org_id=org_id, background_tasks=background_tasks)
    except SchedulingError as e:
        raise _http_error(e) from e
    return ServicePlanResponse.model_validate(plan)


@router.post("/{plan_id}/skip-next", response_model=SkipNextResponse)
def skip_next_visit(plan_id: str, org_id: str = Depends(get_org_id)) -> SkipNextResponse:
    try:
        plan, job = lifecycle.skip_next(plan_id, org_id=org_id)
    except SchedulingError as e:
        raise _http_error(e) from e
    return SkipNextResponse(
        plan=ServicePlanResponse.model_validate(plan),
        skipped_job_id=job.id if job else None,
        skipped_date=job.scheduled_date if job else None,
    )


@router.post("/{plan_id}/cancel", response_model=ServicePlanResponse)
def cancel_service_plan(
    plan_id: str,
    request: CancelPlanRequest | None = None,
    org_id: str = Depends(get_org_id),
) -> ServicePlanResponse:
    try:
        plan = lifecycle.cancel_plan(plan_id, org_id=org_id, reason=request.reason if request else None)
    except SchedulingError as e:
        raise _http_error(e) from e
    return ServicePlanResponse.model_validate(plan)


@router.post("/{plan_id}/billed", response_model=ServicePlanResponse)
def record_service_plan_billing(
    plan_id: str,
    request: RecordBillingRequest | None = None,
    org_id: str = Depends(get_org_id),
) -> ServicePlanResponse:
    try:
        plan = lifecycle.record_billing(plan_id, org_id=org_id, billed_on=request.billed_on if request else None)
    except SchedulingError as e:
        raise _http_error(e) from e
    return ServicePlanResponse.model_validate(plan)


@router.post("/{plan_id}/override-window", response_model=WindowOverrideResponse)
def override_window(
    plan_id: str,
    request: OverrideWindowRequest,
    org_id: str = Depends(get_org_id),
) -> WindowOverrideResponse:
    try:
        override = lifecycle.set_window_override(
            plan_id,
            request.date,
            request.window,
            org_id=org_id,
            reason=request.reason,
        )
    except SchedulingError as e:
        raise _http_error(e) from e
    return WindowOverrideResponse.model_validate(override)


@router.get("/{plan_id}/calendar", response_model=PlanCalendarResponse)
def plan_calendar(
    plan_id: str,
    org_id: str = Depends(get_org_id),
    range_from: date | None = Query(None, alias="from", description="Range start (default: today)"),
    range_to: date | None = Query(None, alias="to", description="Range end (default: start + horizon)"),
) -> PlanCalendarResponse:
    start = range_from or date.today()
    end = range_to or start + timedelta(days=settings.default_horizon_days)
    try:
        calendar = get_plan_calendar(plan_id, start, end, org_id=org_id)
    except SchedulingError as e:
        raise _http_error(e) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return PlanCalendarResponse(
        plan_id=calendar.plan_id,
        range_start=calendar.range_start,
        range_end=calendar.range_end,
        occurrences=[
            CalendarOccurrenceResponse(
                date=occurrence.scheduled_date,
                window_start=occurrence.window.start_str(),
                window_end=occurrence.window.end_str(),
                overridden=occurrence.overridden,
                job_id=occurrence.job_id,
                job_status=occurrence.job_status,
            )
            for occurrence in calendar.occurrences
        ],
        jobs=[JobResponse.model_validate(job) for job in calendar.jobs],
    )


@router.post("/{plan_id}/generate", response_model=GenerateResponse)
def generate_jobs_for_plan(
    plan_id: str,
    request: GenerateRequest | None = None,
    org_id: str = Depends(get_org_id),
) -> GenerateResponse:
    """Generate missing jobs for one plan up to the horizon."""
    try:
        result = generate_for_plan(plan_id, request.horizon_days if request else None, org_id=org_id)
    except SchedulingError as e:
        raise _http_error(e) from e
    except Exception as e:
        logger.exception("Failed to generate jobs", plan_id=plan_id, org_id=org_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate jobs",
        ) from e
    return GenerateResponse(count=result.count, message=result.message)
