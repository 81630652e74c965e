"""Cadence resolver.

Turns a cadence plus its anchor (weekday(s) or day of month) into the
ordered list of occurrence dates inside an inclusive date range.

Deterministic and side-effect free: no database, no wall clock. Anchor data
that does not fit the cadence yields an empty list rather than an error;
plan create/update validation is responsible for rejecting it first.

Rules:
- weekly: first matching weekday >= range_start, then every 7 days
- biweekly: same, stepping 14 days (optionally phase-locked to a reference date)
- twiceWeekly: weekly rule per anchor weekday, merged
- monthly: for each month whose 1st lies in the range, min(day, 28) or the
  true last day for -1; kept only if inside the range
- twiceMonthly: monthly rule for the anchor day and for the 15th, merged
Output is strictly ascending with no duplicates; dates are the dedup key
downstream.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from datetime import date, timedelta
from typing import assert_never

from dateutil.relativedelta import relativedelta

from app.scheduling.types import (
    LAST_DAY_OF_MONTH,
    MAX_ANCHOR_DAY_OF_MONTH,
    TWICE_MONTHLY_SECOND_DAY,
    Cadence,
    Weekday,
    parse_weekdays,
)

CadenceAnchor = int | str | Weekday | Iterable[str | int | Weekday] | None

# Wide enough to contain the 1st of at least two months from any start date
NEXT_OCCURRENCE_LOOKAHEAD_DAYS = 62


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _anchor_weekdays(anchor: CadenceAnchor) -> tuple[Weekday, ...]:
    if anchor is None or isinstance(anchor, int):
        return ()
    try:
        return parse_weekdays(anchor)
    except (ValueError, TypeError):
        return ()


def _anchor_day_of_month(anchor: CadenceAnchor) -> int | None:
    if isinstance(anchor, bool) or not isinstance(anchor, int):
        return None
    if anchor == LAST_DAY_OF_MONTH or anchor >= 1:
        return anchor
    return None


def _first_on_weekday(start: date, weekday: Weekday) -> date:
    return start + timedelta(days=(weekday.number - start.weekday()) % 7)


def _stepped(first: date, range_end: date, step_days: int) -> list[date]:
    dates: list[date] = []
    current = first
    while current <= range_end:
        dates.append(current)
        current += timedelta(days=step_days)
    return dates


def _weekly(weekday: Weekday, range_start: date, range_end: date) -> list[date]:
    return _stepped(_first_on_weekday(range_start, weekday), range_end, 7)


def _biweekly(weekday: Weekday, range_start: date, range_end: date, phase_anchor: date | None) -> list[date]:
    first = _first_on_weekday(range_start, weekday)
    if phase_anchor is not None:
        # Keep the 14-day rhythm of the plan regardless of where this range starts
        phase = _first_on_weekday(phase_anchor, weekday)
        if (first - phase).days % 14:
            first += timedelta(days=7)
    return _stepped(first, range_end, 14)


def _monthly(day_of_month: int, range_start: date, range_end: date) -> list[date]:
    dates: list[date] = []
    month_start = range_start.replace(day=1)
    if month_start < range_start:
        month_start += relativedelta(months=1)
    while month_start <= range_end:
        if day_of_month == LAST_DAY_OF_MONTH:
            target = last_day_of_month(month_start.year, month_start.month)
        else:
            target = month_start.replace(day=min(day_of_month, MAX_ANCHOR_DAY_OF_MONTH))
        if range_start <= target <= range_end:
            dates.append(target)
        month_start += relativedelta(months=1)
    return dates


def _sorted_unique(dates: Iterable[date]) -> list[date]:
    result: list[date] = []
    for value in sorted(dates):
        if not result or result[-1] != value:
            result.append(value)
    return result


def resolve_occurrences(
    cadence: Cadence | str,
    anchor: CadenceAnchor,
    range_start: date,
    range_end: date,
    *,
    phase_anchor: date | None = None,
) -> list[date]:
    """Resolve occurrence dates for a cadence inside [range_start, range_end].

    Args:
        cadence: Cadence (or its name/alias)
        anchor: Weekday(s) for weekly/biweekly/twiceWeekly, day of month for monthly/twiceMonthly
        range_start: Inclusive start
        range_end: Inclusive end
        phase_anchor: Any on-cadence reference date; only biweekly uses it, to keep
            the 14-day phase stable across ranges that start on different weeks

    Returns:
        Strictly ascending list of dates. Empty when the anchor does not fit the
        cadence or the range is empty.
    """
    try:
        cadence = Cadence.parse(cadence)
    except ValueError:
        return []
    if range_start > range_end:
        return []

    weekdays = _anchor_weekdays(anchor)
    day_of_month = _anchor_day_of_month(anchor)

    match cadence:
        case Cadence.WEEKLY:
            if len(weekdays) != 1:
                return []
            return _weekly(weekdays[0], range_start, range_end)
        case Cadence.BIWEEKLY:
            if len(weekdays) != 1:
                return []
            return _biweekly(weekdays[0], range_start, range_end, phase_anchor)
        case Cadence.TWICE_WEEKLY:
            if len(weekdays) != 2:
                return []
            merged = _weekly(weekdays[0], range_start, range_end) + _weekly(weekdays[1], range_start, range_end)
            return _sorted_unique(merged)
        case Cadence.MONTHLY:
            if day_of_month is None:
                return []
            return _monthly(day_of_month, range_start, range_end)
        case Cadence.TWICE_MONTHLY:
            if day_of_month is None:
                return []
            merged = _monthly(day_of_month, range_start, range_end) + _monthly(
                TWICE_MONTHLY_SECOND_DAY, range_start, range_end
            )
            return _sorted_unique(merged)
        case _:
            assert_never(cadence)


def first_occurrence_on_or_after(
    cadence: Cadence | str,
    anchor: CadenceAnchor,
    start: date,
    *,
    phase_anchor: date | None = None,
) -> date | None:
    """First occurrence at or after `start`, or None if the anchor does not fit the cadence."""
    occurrences = resolve_occurrences(
        cadence,
        anchor,
        start,
        start + timedelta(days=NEXT_OCCURRENCE_LOOKAHEAD_DAYS),
        phase_anchor=phase_anchor,
    )
    return occurrences[0] if occurrences else None


def advance_one_step(cadence: Cadence | str, current: date, *, day_of_month: int | None = None) -> date:
    """Move a date forward by exactly one cadence step.

    Weekly-family cadences step 7 days (14 for biweekly); monthly-family
    cadences step one calendar month. A last-day-of-month anchor stays on the
    last day of the following month.
    """
    cadence = Cadence.parse(cadence)
    match cadence:
        case Cadence.WEEKLY | Cadence.TWICE_WEEKLY:
            return current + timedelta(days=7)
        case Cadence.BIWEEKLY:
            return current + timedelta(days=14)
        case Cadence.MONTHLY | Cadence.TWICE_MONTHLY:
            stepped = current + relativedelta(months=1)
            if day_of_month == LAST_DAY_OF_MONTH and current == last_day_of_month(current.year, current.month):
                return last_day_of_month(stepped.year, stepped.month)
            return stepped
        case _:
            assert_never(cadence)


def plan_anchor(cadence: Cadence, weekdays: Iterable[Weekday], day_of_month: int | None) -> CadenceAnchor:
    """Pick the anchor value a plan's cadence resolves against."""
    if cadence.uses_weekdays:
        return tuple(weekdays)
    return day_of_month
