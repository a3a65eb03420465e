"""Calendar cutoffs and the relative time-window queries built on them."""

from __future__ import annotations

import re
import time as _time
from datetime import date, datetime, time, timedelta

from dotask.models import TaskStore

END_OF_DAY = time(23, 59, 59)
SUNDAY = 6  # date.weekday()


def local_timestamp(dt: datetime) -> int:
    """Convert a naive local datetime to epoch seconds.

    ``timetuple()`` of a naive datetime carries ``tm_isdst=-1``, so mktime
    works out whether daylight saving applies on that date.
    """
    return int(_time.mktime(dt.timetuple()))


def _today(now: float | None) -> date:
    return date.fromtimestamp(_time.time() if now is None else now)


def end_of_day(offset_days: int = 0, now: float | None = None) -> int:
    """23:59:59 local time, ``offset_days`` calendar days after today."""
    day = _today(now) + timedelta(days=offset_days)
    return local_timestamp(datetime.combine(day, END_OF_DAY))


def days_until_sunday(now: float | None = None) -> int:
    """0 on a Sunday, 1 on a Saturday, ..., 6 on a Monday."""
    return SUNDAY - _today(now).weekday()


def end_of_week(now: float | None = None) -> int:
    return end_of_day(days_until_sunday(now), now)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def due_today(tasks: TaskStore, now: float | None = None) -> TaskStore:
    return tasks.filter_before(end_of_day(0, now))


def overdue(tasks: TaskStore, now: float | None = None) -> TaskStore:
    return tasks.filter_before(_time.time() if now is None else now)


def due_within(tasks: TaskStore, days: int, now: float | None = None) -> TaskStore:
    return tasks.filter_before(end_of_day(days, now))


def due_this_week(tasks: TaskStore, now: float | None = None) -> TaskStore:
    return tasks.filter_before(end_of_week(now))


# ---------------------------------------------------------------------------
# Parsing the short date/time forms typed at the "add" prompt
# ---------------------------------------------------------------------------

_RELATIVE = re.compile(r"^\+(\d+)$")
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})(?:/(\d{1,2})(?:/(\d{2,4}))?)?$")
_HOUR_MINUTE = re.compile(r"^(\d{1,2})[ :]+(\d{1,2})$")


def parse_date_input(text: str, now: float | None = None) -> date:
    """Parse ``+N``, ``DD``, ``DD/MM`` or ``DD/MM/YYYY``.

    Missing month and year default to the current ones. Raises ValueError for
    anything else, including impossible dates.
    """
    text = text.strip()
    today = _today(now)

    m = _RELATIVE.match(text)
    if m:
        return today + timedelta(days=int(m.group(1)))

    m = _DAY_MONTH_YEAR.match(text)
    if not m:
        raise ValueError(f"can not parse date: {text!r}")
    day = int(m.group(1))
    month = int(m.group(2)) if m.group(2) else today.month
    year = int(m.group(3)) if m.group(3) else today.year
    if year < 100:
        year += 2000
    return date(year, month, day)


def compose_due(day: date, time_text: str, now: float | None = None) -> int:
    """Combine ``day`` with a typed time of day and return epoch seconds.

    ``+N`` is the current clock time on ``day`` plus N hours, ``HH MM`` or
    ``HH:MM`` is an explicit time, and an empty string means end of day.
    """
    time_text = time_text.strip()
    if not time_text:
        return local_timestamp(datetime.combine(day, END_OF_DAY))

    m = _RELATIVE.match(time_text)
    if m:
        clock = datetime.fromtimestamp(_time.time() if now is None else now).time()
        clock = clock.replace(microsecond=0)
        return local_timestamp(datetime.combine(day, clock) + timedelta(hours=int(m.group(1))))

    m = _HOUR_MINUTE.match(time_text)
    if not m:
        raise ValueError(f"can not parse time: {time_text!r}")
    return local_timestamp(datetime.combine(day, time(int(m.group(1)), int(m.group(2)))))
