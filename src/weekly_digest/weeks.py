"""Sequential week calendar.

Weekly summaries are keyed by a calendar-year-scoped week number that counts
Monday-to-Friday blocks from January 1st. It is not the ISO week:

    * weekdays of January before the first Monday form a partial week 1;
    * every Monday starts the next week;
    * Saturday and Sunday belong to the week that starts on the following
      Monday (possibly week 1 of the next year).

Because a weekend points at the upcoming block, ``previous_week`` evaluated on
a Saturday or Sunday returns the block that has just ended, which is what the
weekend summary run wants.
"""

from datetime import date, datetime, timedelta

MAX_WEEK = 53

_SATURDAY = 5


class InvalidWeekError(ValueError):
    """Raised when a (year, week) pair does not name a block of that year."""


def _as_date(day: date | datetime) -> date:
    return day.date() if isinstance(day, datetime) else day


def _first_weekday(year: int) -> date:
    jan1 = date(year, 1, 1)
    if jan1.weekday() >= _SATURDAY:
        return jan1 + timedelta(days=7 - jan1.weekday())
    return jan1


def _first_monday(year: int) -> date:
    jan1 = date(year, 1, 1)
    return jan1 + timedelta(days=(7 - jan1.weekday()) % 7)


def _has_partial_first_week(year: int) -> bool:
    return _first_weekday(year) < _first_monday(year)


def sequential_week(day: date | datetime) -> tuple[int, int]:
    """Return ``(year, week)`` of the Mon-Fri block ``day`` belongs to."""
    day = _as_date(day)
    if day.weekday() >= _SATURDAY:
        day += timedelta(days=7 - day.weekday())

    year = day.year
    first_monday = _first_monday(year)
    if day < first_monday:
        return year, 1

    leading = 1 if _has_partial_first_week(year) else 0
    return year, leading + (day - first_monday).days // 7 + 1


def weeks_in_year(year: int) -> int:
    """Number of sequential weeks in ``year`` (52 or 53)."""
    last = date(year, 12, 31)
    if last.weekday() >= _SATURDAY:
        last -= timedelta(days=last.weekday() - 4)
    return sequential_week(last)[1]


def validate_week(year: int, week: int) -> None:
    """Raise InvalidWeekError unless ``week`` is a block of ``year``."""
    if not 1 <= week <= MAX_WEEK:
        raise InvalidWeekError(f"week must be between 1 and {MAX_WEEK}, got {week}")
    total = weeks_in_year(year)
    if week > total:
        raise InvalidWeekError(f"{year} only has {total} weeks, got week {week}")


def week_date_range(year: int, week: int) -> tuple[date, date]:
    """Return the first and last weekday of a sequential week.

    The range is clipped to the calendar year, so week 1 may start after
    Monday and the last week may end before Friday.

    Raises:
        InvalidWeekError: If the week does not exist in that year.
    """
    validate_week(year, week)

    if week == 1:
        start = _first_weekday(year)
    else:
        leading = 1 if _has_partial_first_week(year) else 0
        start = _first_monday(year) + timedelta(weeks=week - 1 - leading)

    end = start + timedelta(days=4 - start.weekday())
    return start, min(end, date(year, 12, 31))


def week_month(year: int, week: int) -> int:
    """Zero-based month (0 = January) of the week's first weekday."""
    return week_date_range(year, week)[0].month - 1


def previous_week(day: date | datetime) -> tuple[int, int]:
    """Return ``(year, week)`` of the block before the one ``day`` belongs to.

    Week 1 wraps to the last week of the previous year.
    """
    year, week = sequential_week(day)
    if week > 1:
        return year, week - 1
    return year - 1, weeks_in_year(year - 1)


def shift_week(year: int, week: int, offset: int) -> tuple[int, int]:
    """Move ``offset`` weeks forward (or backward) across year boundaries."""
    validate_week(year, week)
    while offset < 0:
        week -= 1
        if week < 1:
            year -= 1
            week = weeks_in_year(year)
        offset += 1
    while offset > 0:
        week += 1
        if week > weeks_in_year(year):
            year += 1
            week = 1
        offset -= 1
    return year, week
