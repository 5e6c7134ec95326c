"""Parsers for the free-text labels Classroom shows next to items.

Due labels ("Due tomorrow", "Due Mar 4, 11:59 PM", "Due in 3 days"), posted
labels ("Posted 2 hours ago", "Yesterday", "Jan 15"), point labels
("100 points") and status labels ("Turned in", "Missing").

Every function takes ``now`` explicitly so results are reproducible; naive
``now`` values are interpreted as UTC.
"""

import re
from datetime import datetime, time, timedelta, timezone

from classroom_sync.models import SubmissionState

MONTHS: dict[str, int] = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_END_OF_DAY = time(23, 59, 59)

_AGO_RE = re.compile(r"(\d+)\s*(minute|hour|day|week|month)s?\s*ago", re.IGNORECASE)
_IN_RE = re.compile(r"(?:due\s+)?in\s+(\d+)\s*(hour|day|week)s?", re.IGNORECASE)
_DATE_RE = re.compile(
    r"([A-Za-z]{3})[a-z]*\.?\s+(\d{1,2})(?:,?\s*(\d{4}))?(?:,?\s*(\d{1,2}):(\d{2})\s*(AM|PM)?)?",
    re.IGNORECASE,
)
_POINTS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*points?", re.IGNORECASE)


def _utc(now: datetime) -> datetime:
    return now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now


def _subtract_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 - months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, 28)
    return value.replace(year=year, month=month, day=day)


def parse_relative_time(text: str | None, now: datetime) -> datetime | None:
    """Turn a posted label into an approximate timestamp.

    Returns None when nothing recognisable is found.
    """
    if not text:
        return None
    now = _utc(now)
    lower = text.lower().strip()

    match = _AGO_RE.search(lower)
    if match:
        value, unit = int(match.group(1)), match.group(2)
        if unit == "month":
            return _subtract_months(now, value)
        delta = {
            "minute": timedelta(minutes=value),
            "hour": timedelta(hours=value),
            "day": timedelta(days=value),
            "week": timedelta(weeks=value),
        }[unit]
        return now - delta

    if "yesterday" in lower:
        return now - timedelta(days=1)

    match = _DATE_RE.search(lower)
    if match:
        month = MONTHS.get(match.group(1).lower())
        if month is not None:
            year = int(match.group(3)) if match.group(3) else now.year
            try:
                return datetime(year, month, int(match.group(2)), tzinfo=now.tzinfo)
            except ValueError:
                return None

    return None


def parse_due_date(text: str | None, now: datetime) -> datetime | None:
    """Turn a due label into a timestamp.

    Dates without a time fall at the end of that day. Dates without a year
    that already passed this year are taken to mean next year.
    """
    if not text:
        return None
    now = _utc(now)
    clean = text.lower().strip()

    if "no due" in clean:
        return None
    if "tomorrow" in clean:
        return datetime.combine((now + timedelta(days=1)).date(), _END_OF_DAY, tzinfo=now.tzinfo)
    if "today" in clean:
        return datetime.combine(now.date(), _END_OF_DAY, tzinfo=now.tzinfo)

    match = _IN_RE.search(clean)
    if match:
        value, unit = int(match.group(1)), match.group(2)
        delta = {
            "hour": timedelta(hours=value),
            "day": timedelta(days=value),
            "week": timedelta(weeks=value),
        }[unit]
        return now + delta

    match = _DATE_RE.search(text)
    if not match:
        return None
    month_name, day, year, hour, minute, meridiem = match.groups()
    month = MONTHS.get(month_name.lower())
    if month is None:
        return None

    if hour and minute:
        hours = int(hour)
        if meridiem and meridiem.upper() == "PM" and hours != 12:
            hours += 12
        if meridiem and meridiem.upper() == "AM" and hours == 12:
            hours = 0
        clock = (hours, int(minute), 0)
    else:
        clock = (_END_OF_DAY.hour, _END_OF_DAY.minute, _END_OF_DAY.second)

    try:
        due = datetime(int(year) if year else now.year, month, int(day), *clock, tzinfo=now.tzinfo)
    except ValueError:
        return None
    if not year and due < now:
        # Feb 29 has no counterpart next year; fall back to Feb 28
        day_next_year = 28 if (due.month, due.day) == (2, 29) else due.day
        due = due.replace(year=due.year + 1, day=day_next_year)
    return due


def parse_points(text: str | None) -> float | None:
    if not text:
        return None
    match = _POINTS_RE.search(text)
    return float(match.group(1)) if match else None


def parse_submission_state(text: str | None) -> SubmissionState:
    """Map the status label shown on an item card to a SubmissionState."""
    if not text:
        return SubmissionState.NEW
    lower = text.lower()
    # Order matters: "Turned in late" / "Done late" are late, not turned in
    if "missing" in lower:
        return SubmissionState.MISSING
    if "late" in lower:
        return SubmissionState.LATE
    if "returned" in lower or "graded" in lower:
        return SubmissionState.RETURNED
    if "turned in" in lower or "handed in" in lower or "done" in lower:
        return SubmissionState.TURNED_IN
    if "assigned" in lower:
        return SubmissionState.ASSIGNED
    return SubmissionState.NEW
