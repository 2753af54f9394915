"""Next-occurrence calculation for recurring annual occasions.

Everything here is a pure function of a record and a reference date. The
reference date is a plain calendar date; callers decide which timezone's
"today" it is (see ``utils.date_utils.local_today``).

Leap-day policy: a Feb 29 occasion is observed on Feb 28 in non-leap years.
"""

import calendar
from datetime import date
from typing import Optional

from ..models.occurrence import OccurrenceView
from ..models.special_date import OriginalDate, SpecialDate
from .categories import CATEGORY_METADATA

LEAP_DAY_SUBSTITUTE = (2, 28)


def occurrence_in_year(original_date: OriginalDate, year: int) -> date:
    """
    Date on which an occasion falls in the given year.

    Args:
        original_date: Recurring month/day
        year: Calendar year

    Returns:
        The occurrence date, with Feb 29 moved to Feb 28 in non-leap years
    """
    if original_date.is_leap_day and not calendar.isleap(year):
        return date(year, *LEAP_DAY_SUBSTITUTE)
    return date(year, original_date.month, original_date.day)


def next_occurrence_date(original_date: OriginalDate, as_of: date) -> date:
    """First occurrence on or after ``as_of``."""
    candidate = occurrence_in_year(original_date, as_of.year)
    if candidate < as_of:
        candidate = occurrence_in_year(original_date, as_of.year + 1)
    return candidate


def attained_age(original_date: OriginalDate, occurrence: date) -> Optional[int]:
    """Years completed at ``occurrence``; None without a known year."""
    if original_date.year is None:
        return None
    age = occurrence.year - original_date.year
    return age if age >= 0 else None


def next_occurrence(record: SpecialDate, as_of: date) -> OccurrenceView:
    """
    Compute the next occurrence of a record relative to a reference date.

    An occurrence on ``as_of`` itself counts as today (``days_until == 0``).

    Args:
        record: Occasion record
        as_of: Reference date

    Returns:
        OccurrenceView for the record
    """
    occurs_on = next_occurrence_date(record.original_date, as_of)
    return OccurrenceView(
        record_id=record.id,
        subject_name=record.display_name,
        icon=record.icon or CATEGORY_METADATA[record.category].emoji,
        category=record.category,
        next_occurrence_date=occurs_on,
        days_until=(occurs_on - as_of).days,
        attained_age=attained_age(record.original_date, occurs_on),
    )


def in_day(record: SpecialDate, day: date) -> bool:
    return next_occurrence_date(record.original_date, day) == day


def in_week(record: SpecialDate, start: date, end: date) -> bool:
    """True when the next occurrence from ``start`` lies within [start, end]."""
    if end < start:
        return False
    return next_occurrence_date(record.original_date, start) <= end


def in_month(record: SpecialDate, year: int, month: int) -> bool:
    """True when the record's occurrence in ``year`` lands in ``month``."""
    return occurrence_in_year(record.original_date, year).month == month
