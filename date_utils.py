"""
Calendar helpers: resolve relative date strings ('today', 'tomorrow') in the user's timezone,
normalize external date values to local calendar dates, and month/year arithmetic.

All occurrence math works on datetime.date values. Anything carrying a time or an offset is
first reduced to the local calendar date, so daylight-saving shifts never leak into day counts.
"""
from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Any

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from zoneinfo import ZoneInfo

# Already ISO date
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def today_in_tz(tz_name: str = "UTC") -> date:
    name = (tz_name or "").strip() or "UTC"
    try:
        tz = ZoneInfo(name)
    except Exception:
        return date.today()
    return datetime.now(tz).date()


def to_local_date(value: Any, tz_name: str = "UTC") -> date | None:
    """
    Reduce a date, datetime or ISO string to a calendar date in the user's timezone.
    Aware datetimes are converted to the timezone first; naive ones are taken as local wall time.
    Returns None for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            try:
                value = value.astimezone(ZoneInfo((tz_name or "").strip() or "UTC"))
            except Exception:
                pass
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    if _ISO_DATE.match(raw):
        try:
            return date.fromisoformat(raw)
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_local_date(parsed, tz_name)


def parse_loose_date(value: Any, tz_name: str = "UTC") -> date | None:
    """Like to_local_date but also accepts free-form dates ('Jan 5 2024', '01/05/2024')."""
    d = to_local_date(value, tz_name)
    if d is not None or value is None:
        return d
    raw = str(value).strip().strip('"')
    if not raw:
        return None
    try:
        return to_local_date(date_parser.parse(raw), tz_name)
    except (ValueError, OverflowError):
        return None


def normalize_date(value: Any, today: date | None = None, tz_name: str = "UTC") -> str:
    """Return YYYY-MM-DD for value, falling back to today when missing or invalid."""
    d = parse_loose_date(value, tz_name)
    if d is None:
        d = today or today_in_tz(tz_name)
    return d.isoformat()


def resolve_relative_date(value: str | None, tz_name: str = "UTC") -> str | None:
    """
    Convert a date string to YYYY-MM-DD. Respects user timezone for relative phrases.
    - If value is already YYYY-MM-DD, return it.
    - If value is 'today', 'tomorrow', 'yesterday', 'next week', 'in N days' or a weekday name,
      return the resolved date.
    - Otherwise return None (caller decides how to report it).
    """
    if not value or not str(value).strip():
        return None
    raw = str(value).strip().lower()
    if _ISO_DATE.match(raw):
        return raw if to_local_date(raw) else None
    today = today_in_tz(tz_name)
    if raw == "today":
        return today.isoformat()
    if raw == "tomorrow":
        return (today + timedelta(days=1)).isoformat()
    if raw == "yesterday":
        return (today - timedelta(days=1)).isoformat()
    if raw == "next week" or raw == "in a week":
        return (today + timedelta(days=7)).isoformat()
    # "in N days"
    m = re.match(r"^in\s+(\d+)\s+days?$", raw)
    if m:
        return (today + timedelta(days=int(m.group(1)))).isoformat()
    # Day names: next occurrence of that weekday, never today
    if raw in _WEEKDAYS:
        days_ahead = (_WEEKDAYS.index(raw) - today.weekday()) % 7 or 7
        return (today + timedelta(days=days_ahead)).isoformat()
    return None


def sunday_weekday(d: date) -> int:
    """Weekday with 0=Sunday..6=Saturday (the numbering used by recurrence day sets)."""
    return (d.weekday() + 1) % 7


def week_start(d: date) -> date:
    """Sunday that opens the week containing d."""
    return d - timedelta(days=sunday_weekday(d))


def weeks_between(start: date, end: date) -> int:
    """Number of Sunday-based week boundaries crossed from start to end."""
    return (week_start(end) - week_start(start)).days // 7


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def years_between(start: date, end: date) -> int:
    return end.year - start.year


def add_months(d: date, months: int) -> date:
    """Calendar month arithmetic; day-of-month clamps to the last day of short months."""
    return d + relativedelta(months=months)


def add_years(d: date, years: int) -> date:
    """Calendar year arithmetic; Feb 29 clamps to Feb 28 in common years."""
    return d + relativedelta(years=years)


def month_days(year: int, month: int) -> list[date]:
    """Every date of the given month, in order."""
    _, last = calendar.monthrange(year, month)
    return [date(year, month, day) for day in range(1, last + 1)]
