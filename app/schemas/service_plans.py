"""Request and response schemas for the service plan API.

Create/update request bodies are the scheduling domain models
(ServicePlanCreate, ServicePlanUpdate); this module adds the remaining
request bodies and the response shapes.
"""

from datetime import date as date_type
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from app.scheduling.types import TimeWindow


class ServicePlanResponse(BaseModel):
    """A service plan as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: str
    site_id: str
    template_id: str | None = None
    frequency: str
    anchor_weekdays: list[str] = Field(default_factory=list, description="Anchor weekdays, e.g. ['mon', 'thu']")
    anchor_day_of_month: int | None = Field(None, description="1-31 (29-31 behave as 28) or -1 for last day")
    window_start: str = Field(..., description="Default window start (HH:MM)")
    window_end: str = Field(..., description="Default window end (HH:MM)")
    service_duration_minutes: int
    starts_on: date_type
    ends_on: date_type | None = Field(None, description="Exclusive end of validity")
    status: str
    trial_ends_at: date_type | None = None
    paused_until: date_type | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    next_occurrence_anchor: date_type | None = Field(None, description="Next visit date generation starts from")
    last_generated_through: date_type | None = None
    price_cents: int
    currency: str
    tax_pct: float
    discount_pct: float
    billing_cadence: str
    next_billing_date: date_type | None = None
    last_billed_date: date_type | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("anchor_weekdays", mode="before")
    @classmethod
    def _split_weekdays(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [w for w in value.split(",") if w]
        return list(value)


class ServicePlanListResponse(BaseModel):
    items: list[ServicePlanResponse]
    total: int
    page: int
    limit: int


class ServicePlanFromTemplate(BaseModel):
    """Fields supplied when creating a plan from a template; anything omitted comes from the template."""

    model_config = ConfigDict(extra="forbid")

    site_id: str
    anchor_weekdays: list[str] | None = None
    anchor_day_of_month: int | None = None
    window: TimeWindow | None = None
    starts_on: date_type | None = None
    ends_on: date_type | None = None
    price_cents: int | None = Field(None, ge=0)
    trial_days: int | None = Field(None, ge=0)
    notes: str | None = None


class PausePlanRequest(BaseModel):
    until: date_type | None = Field(None, description="Resume automatically on this date")


class CancelPlanRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class RecordBillingRequest(BaseModel):
    billed_on: date_type | None = Field(None, description="Date the period was invoiced (default: today)")


class OverrideWindowRequest(BaseModel):
    date: date_type
    window: TimeWindow
    reason: str | None = Field(None, max_length=500)


class WindowOverrideResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str
    date: date_type = Field(..., validation_alias=AliasChoices("override_date", "date"))
    window_start: str
    window_end: str
    reason: str | None = None


class SkipNextResponse(BaseModel):
    plan: ServicePlanResponse
    skipped_job_id: str | None = Field(None, description="Cancelled job, or null when the plan has no upcoming visit")
    skipped_date: date_type | None = None


class GenerateRequest(BaseModel):
    horizon_days: int | None = Field(None, ge=1, le=366, description="Days ahead to generate (default 56)")


class GenerateResponse(BaseModel):
    count: int
    message: str


class PartialFailureResponse(BaseModel):
    plan_id: str
    error_type: str
    message: str


class SweepResponse(BaseModel):
    plans_processed: int
    jobs_generated: int
    failures: list[PartialFailureResponse] = Field(default_factory=list)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str
    site_id: str
    scheduled_date: date_type
    window_start: datetime
    window_end: datetime
    sla_minutes: int
    status: str
    cancel_reason: str | None = None


class CalendarOccurrenceResponse(BaseModel):
    date: date_type
    window_start: str
    window_end: str
    overridden: bool
    job_id: str | None = None
    job_status: str | None = None


class PlanCalendarResponse(BaseModel):
    plan_id: str
    range_start: date_type
    range_end: date_type
    occurrences: list[CalendarOccurrenceResponse]
    jobs: list[JobResponse]
