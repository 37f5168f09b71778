"""
Occurrence generation for recurring transaction rules.

Pure calendar-date arithmetic: given a rule's cadence and bounds, compute the
dates it fires on inside a window. No I/O happens here; the materializer in
recurring_transaction_service.py feeds these dates into the store.

Occurrence k of a rule (k >= 0) is defined from start_date alone:
- daily:   start_date + k * interval days
- weekly:  start_date + k * 7 * interval days
- monthly: start_date's day-of-month, k * interval months later, clamped to
           the last day of shorter months (Jan 31 -> Feb 29 in 2024)
- yearly:  start_date's month/day, k * interval years later; Feb 29 clamps to
           Feb 28 in non-leap years

Deriving every occurrence from start_date (rather than from the previous
occurrence) keeps clamped months from drifting: a rule on the 31st returns to
the 31st after passing through a 30-day month.

The rule's timezone is not consulted; all comparisons are on calendar dates.
"""

import calendar
from datetime import date, timedelta
from typing import Any, List, Mapping, Optional

from ledgerly.utils.dates import DateLike, parse_date, parse_optional_date

FREQUENCIES = ("daily", "weekly", "monthly", "yearly")


def _add_months(anchor: date, months: int, day_of_month: int) -> date:
    total = anchor.year * 12 + (anchor.month - 1) + months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))


def _nth_occurrence(frequency: str, interval: int, start: date, k: int) -> date:
    if frequency == "daily":
        return start + timedelta(days=k * interval)
    if frequency == "weekly":
        return start + timedelta(weeks=k * interval)
    if frequency == "monthly":
        return _add_months(start, k * interval, start.day)
    return _add_months(start, 12 * k * interval, start.day)


def _first_index_on_or_after(frequency: str, interval: int, start: date, target: date) -> int:
    """Smallest k whose occurrence falls on or after target (target >= start)."""
    if frequency in ("daily", "weekly"):
        step_days = interval if frequency == "daily" else 7 * interval
        elapsed_days = (target - start).days
        # Ceiling division: skip ahead to the next aligned day
        return -(-elapsed_days // step_days)

    if frequency == "monthly":
        elapsed = (target.year - start.year) * 12 + (target.month - start.month)
    else:
        elapsed = target.year - start.year

    k = elapsed // interval
    # Same period as target but an earlier day-of-month/day-of-year
    while _nth_occurrence(frequency, interval, start, k) < target:
        k += 1
    return k


def generate_occurrences(
    frequency: str,
    interval: int,
    start_date: date,
    end_date: Optional[date],
    window_start: date,
    window_end: date,
) -> List[date]:
    """
    Compute the dates a rule fires on within an inclusive window.

    Args:
        frequency: 'daily', 'weekly', 'monthly' or 'yearly'
        interval: Repeat every N periods (must be >= 1)
        start_date: First occurrence of the rule (inclusive)
        end_date: Last date the rule may fire on (inclusive), None = open-ended
        window_start: First date of the requested window (inclusive)
        window_end: Last date of the requested window (inclusive)

    Returns:
        Occurrence dates in strictly ascending order, all within
        [max(start_date, window_start), min(end_date or window_end, window_end)].
        Empty if that range is empty.

    Raises:
        ValueError: If frequency is unknown or interval < 1

    Example:
        >>> generate_occurrences("weekly", 2, date(2024, 1, 1), None,
        ...                      date(2024, 1, 1), date(2024, 1, 31))
        [datetime.date(2024, 1, 1), datetime.date(2024, 1, 15), datetime.date(2024, 1, 29)]
    """
    if frequency not in FREQUENCIES:
        raise ValueError(f"Invalid frequency: {frequency}. Must be one of {FREQUENCIES}")
    if interval < 1:
        raise ValueError(f"Invalid interval: {interval}. Must be >= 1")

    range_start = max(start_date, window_start)
    range_end = window_end if end_date is None else min(end_date, window_end)
    if range_start > range_end:
        return []

    k = _first_index_on_or_after(frequency, interval, start_date, range_start)

    occurrences: List[date] = []
    current = _nth_occurrence(frequency, interval, start_date, k)
    while current <= range_end:
        occurrences.append(current)
        k += 1
        current = _nth_occurrence(frequency, interval, start_date, k)

    return occurrences


def occurrences_for_rule(
    rule: Mapping[str, Any],
    window_start: DateLike,
    window_end: DateLike,
) -> List[date]:
    """
    Generate occurrences for a stored recurring_transactions row.

    Reads frequency, interval, start_date and end_date from the row (dates as
    ISO strings, as Supabase returns them). A missing interval means 1.
    """
    return generate_occurrences(
        frequency=str(rule.get("frequency")),
        interval=int(rule.get("interval") or 1),
        start_date=parse_date(rule["start_date"]),
        end_date=parse_optional_date(rule.get("end_date")),
        window_start=parse_date(window_start),
        window_end=parse_date(window_end),
    )
