"""Boundary validation for plan cadence configuration.

The resolver silently returns nothing for anchors that do not fit a cadence,
so every create/update path must run these checks first.
"""

from collections.abc import Sequence
from datetime import date

from app.scheduling.errors import InvalidCadenceConfigError
from app.scheduling.types import LAST_DAY_OF_MONTH, Cadence, Weekday

# Accepted at the boundary; anything above 28 is clamped to 28 by the resolver
MAX_ACCEPTED_DAY_OF_MONTH = 31


def validate_cadence_config(
    cadence: Cadence,
    weekdays: Sequence[Weekday],
    day_of_month: int | None,
) -> None:
    """Validate that the anchor fields required by a cadence are present and well formed.

    Args:
        cadence: Plan cadence
        weekdays: Distinct anchor weekdays
        day_of_month: Anchor day of month (1-31 or -1)

    Raises:
        InvalidCadenceConfigError: If the configuration cannot produce occurrences
    """
    errors: list[str] = []

    if cadence.uses_weekdays:
        required = cadence.required_weekday_count
        if len(set(weekdays)) != required:
            noun = "weekday" if required == 1 else "distinct weekdays"
            errors.append(f"{cadence.value} requires exactly {required} {noun}, got {len(set(weekdays))}")
        if day_of_month is not None:
            errors.append(f"{cadence.value} does not use anchor_day_of_month")
    else:
        if day_of_month is None:
            errors.append(f"{cadence.value} requires anchor_day_of_month")
        elif day_of_month != LAST_DAY_OF_MONTH and not 1 <= day_of_month <= MAX_ACCEPTED_DAY_OF_MONTH:
            errors.append(f"anchor_day_of_month must be 1-{MAX_ACCEPTED_DAY_OF_MONTH} or -1, got {day_of_month}")
        if weekdays:
            errors.append(f"{cadence.value} does not use anchor_weekdays")

    if errors:
        raise InvalidCadenceConfigError(f"Invalid {cadence.value} configuration", errors)


def validate_validity_range(starts_on: date, ends_on: date | None) -> None:
    """Validate the plan validity range; ends_on is exclusive so it must be after starts_on."""
    if ends_on is not None and ends_on <= starts_on:
        raise InvalidCadenceConfigError(
            "Invalid validity range",
            [f"ends_on {ends_on.isoformat()} must be after starts_on {starts_on.isoformat()}"],
        )
