from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime, timedelta
from typing import List

WEEKLY = "weekly"
MONTHLY = "monthly"
YEARLY = "yearly"
ONCE = "once"
RECURRING_PERIODS = {WEEKLY, MONTHLY, YEARLY}
SUPPORTED_PERIODS = RECURRING_PERIODS | {ONCE}

WEEKLY_DAYS = 7
WEEKDAY_SEARCH_LIMIT = 8
RELATIVE_LABEL_HORIZON_DAYS = 7


def normalize_period(value: str | None) -> str | None:
    """Return the canonical period name, or None for anything unsupported."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized not in SUPPORTED_PERIODS:
        return None
    return normalized


def start_of_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def next_occurrence(
    anchor_date: date | datetime,
    period: str,
    reference_date: date | datetime,
) -> date | None:
    """First occurrence strictly after ``reference_date``.

    Returns None for a one-time item whose date has passed and for
    unrecognized periods.
    """
    anchor = start_of_day(anchor_date)
    reference = start_of_day(reference_date)
    normalized = normalize_period(period)

    if normalized == WEEKLY:
        candidate = reference
        for _ in range(WEEKDAY_SEARCH_LIMIT):
            if candidate.weekday() == anchor.weekday() and candidate > reference:
                return candidate
            candidate += timedelta(days=1)
        return reference
    if normalized == MONTHLY:
        this_month = _clamped_date(reference.year, reference.month, anchor.day)
        if this_month > reference:
            return this_month
        return add_months(month_start(reference), 1, anchor.day)
    if normalized == YEARLY:
        this_year = _clamped_date(reference.year, anchor.month, anchor.day)
        if this_year > reference:
            return this_year
        return _clamped_date(reference.year + 1, anchor.month, anchor.day)
    if normalized == ONCE:
        return anchor if anchor > reference else None
    return None


def occurrences_between(
    anchor_date: date | datetime | None,
    period: str,
    start_date: date | datetime,
    end_date: date | datetime,
) -> List[date]:
    """Every occurrence of the anchor's schedule in ``[start_date, end_date]``.

    Dates are compared at day granularity. Monthly and yearly occurrences
    are measured from the anchor, so an anchor on the 31st lands on the
    last day of short months and returns to the 31st afterwards.
    """
    normalized = normalize_period(period)
    if normalized is None or anchor_date is None:
        return []
    anchor = start_of_day(anchor_date)
    range_start = start_of_day(start_date)
    range_end = start_of_day(end_date)

    if normalized == ONCE:
        if range_start <= anchor <= range_end:
            return [anchor]
        return []

    offset = _first_offset_on_or_after(anchor, normalized, range_start)
    occurrences: List[date] = []
    current = _step(anchor, normalized, offset)
    while current <= range_end:
        occurrences.append(current)
        offset += 1
        current = _step(anchor, normalized, offset)
    return occurrences


def format_relative_label(value: date | datetime, reference_date: date | datetime) -> str:
    days = (start_of_day(value) - start_of_day(reference_date)).days
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if 1 < days <= RELATIVE_LABEL_HORIZON_DAYS:
        return f"In {days} days"
    day = start_of_day(value)
    return f"{day:%b} {day.day}"


def should_suppress_completed_one_time(
    repetition_date: date | datetime,
    reference_date: date | datetime,
) -> bool:
    """True from the first day of the month after the one-time date."""
    repetition = start_of_day(repetition_date)
    reference = start_of_day(reference_date)
    return (reference.year, reference.month) > (repetition.year, repetition.month)


def add_months(start_date: date, months: int, anchor_day: int | None = None) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    return _clamped_date(year, month, anchor_day or start_date.day)


def month_start(value: date) -> date:
    return value.replace(day=1)


def month_end(value: date) -> date:
    return value.replace(day=monthrange(value.year, value.month)[1])


def _clamped_date(year: int, month: int, day: int) -> date:
    last_day = monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def _step(anchor: date, period: str, offset: int) -> date:
    if period == WEEKLY:
        return anchor + timedelta(days=WEEKLY_DAYS * offset)
    if period == MONTHLY:
        return add_months(anchor, offset, anchor.day)
    return add_months(anchor, 12 * offset, anchor.day)


def _first_offset_on_or_after(anchor: date, period: str, minimum_date: date) -> int:
    if anchor >= minimum_date:
        return 0
    if period == WEEKLY:
        days_between = (minimum_date - anchor).days
        return (days_between + WEEKLY_DAYS - 1) // WEEKLY_DAYS
    if period == MONTHLY:
        offset = (minimum_date.year - anchor.year) * 12 + (minimum_date.month - anchor.month)
    else:
        offset = minimum_date.year - anchor.year
    if _step(anchor, period, offset) < minimum_date:
        offset += 1
    return offset
