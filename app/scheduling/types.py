"""Domain types for recurring service scheduling.

Cadences, statuses and windows are closed enums / value objects so that
every resolver branch and lifecycle transition is handled explicitly.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator, model_validator

if TYPE_CHECKING:
    from app.db.models import ServicePlan

LAST_DAY_OF_MONTH = -1
TWICE_MONTHLY_SECOND_DAY = 15
MAX_ANCHOR_DAY_OF_MONTH = 28


class Cadence(StrEnum):
    """Supported recurrence cadences."""

    WEEKLY = "weekly"
    TWICE_WEEKLY = "twiceWeekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    TWICE_MONTHLY = "twiceMonthly"

    @classmethod
    def parse(cls, value: str | Cadence) -> Cadence:
        """Parse a cadence name, accepting legacy aliases.

        Raises:
            ValueError: If the value names no supported cadence
        """
        if isinstance(value, Cadence):
            return value
        key = str(value).strip().replace("-", "_").lower()
        cadence = _CADENCE_ALIASES.get(key)
        if cadence is None:
            raise ValueError(f"Unsupported cadence: {value!r}")
        return cadence

    @property
    def uses_weekdays(self) -> bool:
        return self in {Cadence.WEEKLY, Cadence.TWICE_WEEKLY, Cadence.BIWEEKLY}

    @property
    def required_weekday_count(self) -> int:
        if self is Cadence.TWICE_WEEKLY:
            return 2
        return 1 if self.uses_weekdays else 0


_CADENCE_ALIASES: dict[str, Cadence] = {
    "weekly": Cadence.WEEKLY,
    "onceweek": Cadence.WEEKLY,
    "once_week": Cadence.WEEKLY,
    "twiceweekly": Cadence.TWICE_WEEKLY,
    "twice_weekly": Cadence.TWICE_WEEKLY,
    "twice_week": Cadence.TWICE_WEEKLY,
    "biweekly": Cadence.BIWEEKLY,
    "monthly": Cadence.MONTHLY,
    "oncemonth": Cadence.MONTHLY,
    "once_month": Cadence.MONTHLY,
    "twicemonthly": Cadence.TWICE_MONTHLY,
    "twice_monthly": Cadence.TWICE_MONTHLY,
    "twice_month": Cadence.TWICE_MONTHLY,
}


class Weekday(StrEnum):
    """Weekday symbols, ordered Monday first like date.weekday()."""

    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"
    SUN = "sun"

    @classmethod
    def parse(cls, value: str | int | Weekday) -> Weekday:
        """Parse "mon", "Monday", "MON" or a date.weekday() integer."""
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            return _WEEKDAYS_BY_INDEX[value % 7]
        return cls(str(value).strip().lower()[:3])

    @property
    def number(self) -> int:
        """Weekday number as returned by date.weekday() (Monday is 0)."""
        return _WEEKDAYS_BY_INDEX.index(self)


_WEEKDAYS_BY_INDEX: list[Weekday] = list(Weekday)


def parse_weekdays(raw: str | Iterable[str | int | Weekday] | None) -> tuple[Weekday, ...]:
    """Parse a stored comma list or an iterable into distinct weekdays, in given order."""
    if raw is None:
        return ()
    items = raw.split(",") if isinstance(raw, str) else raw
    weekdays: list[Weekday] = []
    for item in items:
        if isinstance(item, str) and not item.strip():
            continue
        weekday = Weekday.parse(item)
        if weekday not in weekdays:
            weekdays.append(weekday)
    return tuple(weekdays)


def format_weekdays(weekdays: Iterable[Weekday]) -> str | None:
    joined = ",".join(w.value for w in weekdays)
    return joined or None


class PlanStatus(StrEnum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class JobStatus(StrEnum):
    """Job statuses. Only SCHEDULED and CANCELLED are written by the scheduler."""

    SCHEDULED = "scheduled"
    EN_ROUTE = "en_route"
    ON_SITE = "on_site"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BillingCadence(StrEnum):
    PER_VISIT = "perVisit"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"

    @classmethod
    def parse(cls, value: str | BillingCadence) -> BillingCadence:
        if isinstance(value, BillingCadence):
            return value
        if str(value).strip().lower() in {"per_visit", "pervisit"}:
            return cls.PER_VISIT
        return cls(str(value).strip().lower())


class TimeWindow(BaseModel):
    """Time-of-day window (local wall clock).

    Attributes:
        start: Start time of day (HH:MM)
        end: End time of day (HH:MM), strictly after start
    """

    start: time
    end: time

    @model_validator(mode="after")
    def _check_order(self) -> TimeWindow:
        if self.end <= self.start:
            raise ValueError(f"window end {self.end:%H:%M} must be after start {self.start:%H:%M}")
        return self

    @classmethod
    def from_strings(cls, start: str, end: str) -> TimeWindow:
        return cls(start=time.fromisoformat(start), end=time.fromisoformat(end))

    @property
    def duration_minutes(self) -> int:
        return (self.end.hour * 60 + self.end.minute) - (self.start.hour * 60 + self.start.minute)

    def start_str(self) -> str:
        return self.start.strftime("%H:%M")

    def end_str(self) -> str:
        return self.end.strftime("%H:%M")

    def on(self, day: date) -> tuple[datetime, datetime]:
        """Combine the window with a calendar date into absolute timestamps."""
        return datetime.combine(day, self.start), datetime.combine(day, self.end)


@dataclass(frozen=True)
class PlanSnapshot:
    """Read-only view of a plan as seen by the pure scheduling functions."""

    plan_id: str
    org_id: str
    site_id: str
    cadence: Cadence
    weekdays: tuple[Weekday, ...]
    day_of_month: int | None
    default_window: TimeWindow
    status: PlanStatus
    validity_start: date | None = None
    validity_end: date | None = None
    phase_anchor: date | None = None
    service_duration_minutes: int = 45

    @classmethod
    def from_model(cls, plan: ServicePlan) -> PlanSnapshot:
        return cls(
            plan_id=plan.id,
            org_id=plan.org_id,
            site_id=plan.site_id,
            cadence=Cadence.parse(plan.frequency),
            weekdays=parse_weekdays(plan.anchor_weekdays),
            day_of_month=plan.anchor_day_of_month,
            default_window=TimeWindow.from_strings(plan.window_start, plan.window_end),
            status=PlanStatus(plan.status),
            validity_start=plan.starts_on,
            validity_end=plan.ends_on,
            phase_anchor=plan.next_occurrence_anchor,
            service_duration_minutes=plan.service_duration_minutes,
        )


@dataclass(frozen=True)
class JobToCreate:
    """A job the materializer decided is missing."""

    plan_id: str
    scheduled_date: date
    window_start: datetime
    window_end: datetime
    sla_minutes: int
    overridden: bool = False


@dataclass(frozen=True)
class MaterializationResult:
    """Output of one materialization pass.

    Attributes:
        jobs: Jobs to create, ascending by date
        latest_date: Latest occurrence date seen in range (existing or new), None if none
        reason: Why nothing was produced; None when jobs is non-empty
    """

    jobs: list[JobToCreate]
    latest_date: date | None
    reason: str | None = None


@dataclass(frozen=True)
class GenerationResult:
    count: int
    message: str


@dataclass(frozen=True)
class MaterializationPartialFailure:
    """One plan that failed during a batch sweep."""

    plan_id: str
    error_type: str
    message: str


@dataclass
class SweepResult:
    plans_processed: int = 0
    jobs_generated: int = 0
    failures: list[MaterializationPartialFailure] = field(default_factory=list)


class ServicePlanCreate(BaseModel):
    """Request to create a service plan.

    Attributes:
        site_id: Serviced location
        frequency: Cadence (aliases such as "onceWeek" are accepted)
        anchor_weekdays: One weekday (weekly/biweekly) or two (twiceWeekly)
        anchor_day_of_month: 1-28 or -1 (last day); 29-31 are clamped to 28
        window: Default time window; falls back to configured defaults
        trial_days: When > 0 the plan starts in trial until starts_on + trial_days
        starts_on: Validity start (inclusive), defaults to today
        ends_on: Validity end (exclusive)
    """

    site_id: str
    frequency: Cadence
    anchor_weekdays: list[Weekday] = Field(default_factory=list)
    anchor_day_of_month: int | None = None
    window: TimeWindow | None = None
    service_duration_minutes: int | None = Field(default=None, gt=0)
    price_cents: int = Field(default=0, ge=0)
    currency: str = "GHS"
    tax_pct: float = Field(default=0.0, ge=0, le=100)
    discount_pct: float = Field(default=0.0, ge=0, le=100)
    billing_cadence: BillingCadence = BillingCadence.MONTHLY
    trial_days: int = Field(default=0, ge=0)
    starts_on: date | None = None
    ends_on: date | None = None
    notes: str | None = None
    template_id: str | None = None

    @field_validator("frequency", mode="before")
    @classmethod
    def _parse_frequency(cls, value: Any) -> Cadence:
        return Cadence.parse(value)

    @field_validator("anchor_weekdays", mode="before")
    @classmethod
    def _parse_weekdays(cls, value: Any) -> list[Weekday]:
        return list(parse_weekdays(value))

    @field_validator("billing_cadence", mode="before")
    @classmethod
    def _parse_billing(cls, value: Any) -> BillingCadence:
        return BillingCadence.parse(value)


class ServicePlanUpdate(BaseModel):
    """Partial update of a service plan; omitted fields are left untouched."""

    frequency: Cadence | None = None
    anchor_weekdays: list[Weekday] | None = None
    anchor_day_of_month: int | None = None
    window: TimeWindow | None = None
    service_duration_minutes: int | None = Field(default=None, gt=0)
    price_cents: int | None = Field(default=None, ge=0)
    tax_pct: float | None = Field(default=None, ge=0, le=100)
    discount_pct: float | None = Field(default=None, ge=0, le=100)
    billing_cadence: BillingCadence | None = None
    ends_on: date | None = None
    notes: str | None = None

    @field_validator("frequency", mode="before")
    @classmethod
    def _parse_frequency(cls, value: Any) -> Cadence | None:
        return None if value is None else Cadence.parse(value)

    @field_validator("anchor_weekdays", mode="before")
    @classmethod
    def _parse_weekdays(cls, value: Any) -> list[Weekday] | None:
        return None if value is None else list(parse_weekdays(value))

    @field_validator("billing_cadence", mode="before")
    @classmethod
    def _parse_billing(cls, value: Any) -> BillingCadence | None:
        return None if value is None else BillingCadence.parse(value)
