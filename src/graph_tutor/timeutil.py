"""Human-friendly time references for the audit log.

Accepts ISO dates ("2026-01-15", "2026-01-15T14:30:00"), relative offsets
("3 days ago", "2 weeks ago") and a few names ("today", "yesterday",
"last week", "last month").
"""

import re
from datetime import datetime, timedelta, timezone

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

_AGO = re.compile(r"^(\d+)\s*(second|minute|hour|day|week|month|year)s?\s*ago$")

_OFFSETS = {
    "second": lambda n: timedelta(seconds=n),
    "minute": lambda n: timedelta(minutes=n),
    "hour": lambda n: timedelta(hours=n),
    "day": lambda n: timedelta(days=n),
    "week": lambda n: timedelta(weeks=n),
    "month": lambda n: relativedelta(months=n),
    "year": lambda n: relativedelta(years=n),
}

# Coarsest unit first: (seconds per unit, label)
_UNITS = (
    (365 * 86400, "year"),
    (30 * 86400, "month"),
    (7 * 86400, "week"),
    (86400, "day"),
    (3600, "hour"),
    (60, "minute"),
)


def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_time_reference(ref: str, now: datetime | None = None) -> datetime:
    """Parse a time reference into a timezone-aware UTC datetime.

    Raises:
        ValueError: If the reference cannot be parsed
    """
    now = now or datetime.now(timezone.utc)
    text = ref.strip().lower()

    named = {
        "now": lambda: now,
        "today": lambda: _midnight(now),
        "yesterday": lambda: _midnight(now - timedelta(days=1)),
        "last week": lambda: now - timedelta(weeks=1),
        "last month": lambda: now - relativedelta(months=1),
        "last year": lambda: now - relativedelta(years=1),
    }
    if text in named:
        return named[text]()

    match = _AGO.match(text)
    if match:
        return now - _OFFSETS[match.group(2)](int(match.group(1)))

    try:
        parsed = dateparser.parse(ref.strip())
    except (ValueError, OverflowError, dateparser.ParserError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e
    if parsed is None:
        raise ValueError(f"Cannot parse time reference: {ref}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_relative_time(dt: datetime, now: datetime | None = None) -> str:
    """Format a datetime as "3 days ago" style text."""
    now = now or datetime.now(timezone.utc)
    seconds = int((now - dt).total_seconds())
    if seconds < 0:
        return "in the future"
    for size, label in _UNITS:
        if seconds >= size:
            count = seconds // size
            return f"{count} {label}{'s' if count != 1 else ''} ago"
    return f"{seconds} seconds ago"
