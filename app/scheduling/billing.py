"""Next billing date computation.

Billing dates are always pinned to the organization billing day (the 25th by
default). Per-visit plans have no billing date.
"""

from datetime import date

from dateutil.relativedelta import relativedelta

from app.config.settings import settings
from app.scheduling.types import BillingCadence

_MONTHS_PER_PERIOD: dict[BillingCadence, int] = {
    BillingCadence.MONTHLY: 1,
    BillingCadence.QUARTERLY: 3,
    BillingCadence.ANNUALLY: 12,
}


def next_billing_date(
    billing_cadence: BillingCadence | str,
    current: date,
    *,
    billing_day: int | None = None,
) -> date | None:
    """Advance a billing date by one billing period and pin it to the billing day.

    Args:
        billing_cadence: perVisit, monthly, quarterly or annually
        current: Current billing date (or plan start when never billed)
        billing_day: Day of month to pin to; defaults to settings.billing_day_of_month

    Returns:
        Next billing date, or None for per-visit billing
    """
    cadence = BillingCadence.parse(billing_cadence)
    if cadence is BillingCadence.PER_VISIT:
        return None
    day = billing_day or settings.billing_day_of_month
    return (current + relativedelta(months=_MONTHS_PER_PERIOD[cadence])).replace(day=day)


def first_billing_date(
    billing_cadence: BillingCadence | str,
    service_start: date,
    *,
    billing_day: int | None = None,
) -> date | None:
    """First billing day on or after the date paid service starts."""
    cadence = BillingCadence.parse(billing_cadence)
    if cadence is BillingCadence.PER_VISIT:
        return None
    day = billing_day or settings.billing_day_of_month
    candidate = service_start.replace(day=day)
    if candidate < service_start:
        candidate = (service_start + relativedelta(months=1)).replace(day=day)
    return candidate
