"""
Expansion of a medication schedule into concrete reminder timestamps.

Generates timestamps for a rolling window of calendar days starting at "now",
clipped to the medication's active date range. Times of day are interpreted
in the configured reminder timezone.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import List, Optional, Sequence

from medreminder.core.models import Medication
from medreminder.core.timing import resolve_medication_timing


DEFAULT_WINDOW_DAYS = 7


def _aware(value: datetime, tz: tzinfo) -> datetime:
    """Attach tz to naive datetimes, leave aware ones alone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def _day_timestamp(day: date, time_of_day: str, tz: tzinfo) -> datetime:
    hours, minutes = time_of_day.split(':')
    return datetime.combine(day, time(int(hours), int(minutes)), tzinfo=tz)


def generate_reminder_times(
    medication: Medication,
    now: datetime,
    window_days: int = DEFAULT_WINDOW_DAYS,
    tz: tzinfo = timezone.utc,
    timing: Optional[Sequence[str]] = None
) -> List[datetime]:
    """
    Compute future reminder timestamps for a medication.

    For each calendar day offset 0..window_days-1 from today (in tz), days
    before the start date are skipped and generation stops at the first day
    after the end date. Only timestamps strictly after now and within
    [start_date, end_date] are kept.

    Args:
        medication: Medication with start_date, optional end_date
        now: Reference instant; naive values are taken to be in tz
        window_days: Number of calendar days to cover
        tz: Timezone the times of day are expressed in
        timing: Resolved HH:MM times; resolved from the medication if None

    Returns:
        Sorted, duplicate-free list of timezone-aware datetimes
    """
    if timing is None:
        timing = resolve_medication_timing(medication)

    if not timing or window_days <= 0:
        return []

    now = _aware(now, tz)
    start = _aware(medication.start_date, tz)
    end = _aware(medication.end_date, tz) if medication.end_date else None

    today = now.astimezone(tz).date()
    start_day = start.astimezone(tz).date()
    end_day = end.astimezone(tz).date() if end else None

    times = set()
    for offset in range(window_days):
        day = today + timedelta(days=offset)

        if day < start_day:
            continue

        if end_day is not None and day > end_day:
            break

        for time_of_day in timing:
            scheduled = _day_timestamp(day, time_of_day, tz)

            if scheduled <= now or scheduled < start:
                continue
            if end is not None and scheduled > end:
                continue

            times.add(scheduled)

    return sorted(times)
