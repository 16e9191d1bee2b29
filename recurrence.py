"""
Recurrence engine: decide whether a rule produces an occurrence on a date, compute the next
occurrence after a date, and describe a rule for display.

Pure functions only. Every pattern is registered once in _PATTERNS; occurs_on, next_occurrence
and format_label all dispatch through that table, so a pattern cannot exist for one operation
and be missing from another.

Weekday numbering follows the stored rules: 0=Sunday..6=Saturday. Weeks start on Sunday.
`interval` always selects which occurrences of the raw sequence count: every Nth day, every
Nth week (for weekday sets too), every Nth month, every Nth year.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError, field_validator

from date_utils import (
    add_months,
    add_years,
    months_between,
    sunday_weekday,
    to_local_date,
    weeks_between,
    years_between,
)


class Pattern(str, Enum):
    DAILY = "daily"
    WORKWEEK = "workweek"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


RECURRENCE_PATTERNS = [
    {"value": Pattern.DAILY.value, "label": "Daily"},
    {"value": Pattern.WORKWEEK.value, "label": "Weekdays"},
    {"value": Pattern.WEEKLY.value, "label": "Weekly"},
    {"value": Pattern.MONTHLY.value, "label": "Monthly"},
    {"value": Pattern.YEARLY.value, "label": "Yearly"},
]

DAYS_OF_WEEK = [
    {"value": 0, "label": "Sun", "fullLabel": "Sunday"},
    {"value": 1, "label": "Mon", "fullLabel": "Monday"},
    {"value": 2, "label": "Tue", "fullLabel": "Tuesday"},
    {"value": 3, "label": "Wed", "fullLabel": "Wednesday"},
    {"value": 4, "label": "Thu", "fullLabel": "Thursday"},
    {"value": 5, "label": "Fri", "fullLabel": "Friday"},
    {"value": 6, "label": "Sat", "fullLabel": "Saturday"},
]

WORKWEEK_DAYS = (1, 2, 3, 4, 5)


class RecurrenceRule(BaseModel):
    """Stored recurrence configuration. Unknown patterns are kept as-is and never recur."""

    enabled: bool = True
    pattern: str = Pattern.WEEKLY.value
    days: list[int] = Field(default_factory=list, description="Weekdays 0=Sun..6=Sat; weekly only")
    interval: int = Field(default=1, ge=1)

    @field_validator("pattern", mode="before")
    @classmethod
    def _normalize_pattern(cls, v: Any) -> str:
        if isinstance(v, Enum):
            v = v.value
        return str(v or "").strip().lower()

    @field_validator("days", mode="before")
    @classmethod
    def _normalize_days(cls, v: Any) -> list[int]:
        if not v:
            return []
        out: set[int] = set()
        for d in v:
            try:
                n = int(d)
            except (TypeError, ValueError):
                continue
            if 0 <= n <= 6:
                out.add(n)
        return sorted(out)

    @field_validator("interval", mode="before")
    @classmethod
    def _clamp_interval(cls, v: Any) -> int:
        try:
            return max(1, int(v or 1))
        except (TypeError, ValueError):
            return 1


def create_recurrence(pattern: Pattern | str, days: list[int] | None = None, interval: int = 1) -> RecurrenceRule:
    """Build an enabled rule. Day sets are only kept for the weekly pattern."""
    rule = RecurrenceRule(pattern=pattern, days=days or [], interval=interval)
    if rule.pattern != Pattern.WEEKLY.value:
        rule.days = []
    return rule


def _coerce_rule(rule: RecurrenceRule | dict | None) -> RecurrenceRule | None:
    if rule is None or isinstance(rule, RecurrenceRule):
        return rule
    try:
        return RecurrenceRule.model_validate(rule)
    except ValidationError:
        return None


# --- pattern implementations ---


def _grid_next(anchor: date, current: date, step_days: int) -> date:
    """Next point strictly after current on the grid anchor + k*step_days (k >= 0)."""
    if current < anchor:
        return anchor
    k = (current - anchor).days // step_days + 1
    return anchor + timedelta(days=k * step_days)


def _weekday_set_occurs(days: tuple[int, ...] | list[int], interval: int, anchor: date, target: date) -> bool:
    return sunday_weekday(target) in days and weeks_between(anchor, target) % interval == 0


def _weekday_set_next(days: tuple[int, ...] | list[int], interval: int, anchor: date, current: date) -> date | None:
    if not days:
        return None
    start = max(current + timedelta(days=1), anchor)
    # An eligible week starts within `interval` weeks; one more week covers every weekday in it.
    for offset in range(7 * (interval + 1)):
        d = start + timedelta(days=offset)
        if _weekday_set_occurs(days, interval, anchor, d):
            return d
    return None


def _daily_occurs(rule: RecurrenceRule, anchor: date, target: date) -> bool:
    return (target - anchor).days % rule.interval == 0


def _daily_next(rule: RecurrenceRule, anchor: date, current: date) -> date | None:
    return _grid_next(anchor, current, rule.interval)


def _daily_label(rule: RecurrenceRule) -> str:
    return "Every day" if rule.interval == 1 else f"Every {rule.interval} days"


def _workweek_occurs(rule: RecurrenceRule, anchor: date, target: date) -> bool:
    return _weekday_set_occurs(WORKWEEK_DAYS, rule.interval, anchor, target)


def _workweek_next(rule: RecurrenceRule, anchor: date, current: date) -> date | None:
    return _weekday_set_next(WORKWEEK_DAYS, rule.interval, anchor, current)


def _workweek_label(rule: RecurrenceRule) -> str:
    return "Weekdays" if rule.interval == 1 else f"Weekdays, every {rule.interval} weeks"


def _weekly_occurs(rule: RecurrenceRule, anchor: date, target: date) -> bool:
    if rule.days:
        return _weekday_set_occurs(rule.days, rule.interval, anchor, target)
    return (target - anchor).days % (7 * rule.interval) == 0


def _weekly_next(rule: RecurrenceRule, anchor: date, current: date) -> date | None:
    if rule.days:
        return _weekday_set_next(rule.days, rule.interval, anchor, current)
    return _grid_next(anchor, current, 7 * rule.interval)


def _weekly_label(rule: RecurrenceRule) -> str:
    if rule.days:
        names = ", ".join(DAYS_OF_WEEK[d]["label"] for d in rule.days)
        if rule.interval == 1:
            return f"Every {names}"
        return f"Every {names}, every {rule.interval} weeks"
    return "Every week" if rule.interval == 1 else f"Every {rule.interval} weeks"


def _calendar_next(rule: RecurrenceRule, anchor: date, current: date, elapsed: int, shift: Callable[[date, int], date]) -> date:
    k = max(0, elapsed)
    k -= k % rule.interval
    cand = shift(anchor, k)
    while cand <= current:
        k += rule.interval
        cand = shift(anchor, k)
    return cand


def _monthly_occurs(rule: RecurrenceRule, anchor: date, target: date) -> bool:
    m = months_between(anchor, target)
    return m % rule.interval == 0 and add_months(anchor, m) == target


def _monthly_next(rule: RecurrenceRule, anchor: date, current: date) -> date | None:
    return _calendar_next(rule, anchor, current, months_between(anchor, current), add_months)


def _monthly_label(rule: RecurrenceRule) -> str:
    return "Every month" if rule.interval == 1 else f"Every {rule.interval} months"


def _yearly_occurs(rule: RecurrenceRule, anchor: date, target: date) -> bool:
    y = years_between(anchor, target)
    return y % rule.interval == 0 and add_years(anchor, y) == target


def _yearly_next(rule: RecurrenceRule, anchor: date, current: date) -> date | None:
    return _calendar_next(rule, anchor, current, years_between(anchor, current), add_years)


def _yearly_label(rule: RecurrenceRule) -> str:
    return "Every year" if rule.interval == 1 else f"Every {rule.interval} years"


@dataclass(frozen=True)
class _PatternOps:
    occurs: Callable[[RecurrenceRule, date, date], bool]
    next_after: Callable[[RecurrenceRule, date, date], date | None]
    label: Callable[[RecurrenceRule], str]


_PATTERNS: dict[str, _PatternOps] = {
    Pattern.DAILY.value: _PatternOps(_daily_occurs, _daily_next, _daily_label),
    Pattern.WORKWEEK.value: _PatternOps(_workweek_occurs, _workweek_next, _workweek_label),
    Pattern.WEEKLY.value: _PatternOps(_weekly_occurs, _weekly_next, _weekly_label),
    Pattern.MONTHLY.value: _PatternOps(_monthly_occurs, _monthly_next, _monthly_label),
    Pattern.YEARLY.value: _PatternOps(_yearly_occurs, _yearly_next, _yearly_label),
}


def _active_ops(rule: RecurrenceRule | dict | None) -> tuple[RecurrenceRule, _PatternOps] | None:
    r = _coerce_rule(rule)
    if r is None or not r.enabled:
        return None
    ops = _PATTERNS.get(r.pattern)
    if ops is None:
        return None
    return r, ops


# --- public API ---


def occurs_on(rule: RecurrenceRule | dict | None, anchor: date | str, target: date | str) -> bool:
    """True if the rule anchored at `anchor` produces an occurrence on `target`."""
    active = _active_ops(rule)
    anchor_d = to_local_date(anchor)
    target_d = to_local_date(target)
    if active is None or anchor_d is None or target_d is None:
        return False
    if target_d < anchor_d:
        return False
    r, ops = active
    return ops.occurs(r, anchor_d, target_d)


def next_occurrence(
    rule: RecurrenceRule | dict | None,
    current: date | str,
    anchor: date | str | None = None,
) -> date | None:
    """
    First date strictly after `current` on which the rule fires.

    `anchor` fixes the rule's phase (which weeks/months count) and the tracked day-of-month;
    it defaults to `current`. Monthly and yearly dates that do not exist in a target month
    clamp to the month's last day (2024-01-31 -> 2024-02-29), while the anchor keeps its own
    day for later months. Returns None for disabled rules and unknown patterns.
    """
    active = _active_ops(rule)
    current_d = to_local_date(current)
    if active is None or current_d is None:
        return None
    anchor_d = to_local_date(anchor) if anchor is not None else current_d
    if anchor_d is None:
        anchor_d = current_d
    r, ops = active
    return ops.next_after(r, anchor_d, current_d)


def format_label(rule: RecurrenceRule | dict | None) -> str:
    """Human-readable rule description, e.g. 'Every 2 days', 'Every Mon, Wed', 'Weekdays'."""
    r = _coerce_rule(rule)
    if r is None or not r.enabled:
        return "Does not repeat"
    ops = _PATTERNS.get(r.pattern)
    if ops is None:
        return "Custom"
    return ops.label(r)


def occurrences_between(
    rule: RecurrenceRule | dict | None,
    anchor: date | str,
    start: date | str,
    end: date | str,
) -> list[date]:
    """All occurrence dates in [start, end], in order."""
    start_d = to_local_date(start)
    end_d = to_local_date(end)
    if start_d is None or end_d is None or end_d < start_d:
        return []
    out: list[date] = []
    d = start_d
    while d <= end_d:
        if occurs_on(rule, anchor, d):
            out.append(d)
        d += timedelta(days=1)
    return out


def is_known_pattern(pattern: str | None) -> bool:
    return (pattern or "").strip().lower() in _PATTERNS


def upcoming_occurrences(rule: RecurrenceRule | dict | None, anchor: date | str, count: int) -> list[date]:
    """The first `count` occurrences from the anchor, the anchor itself included when it fires."""
    anchor_d = to_local_date(anchor)
    if anchor_d is None or count <= 0:
        return []
    out = occurrences_between(rule, anchor_d, anchor_d, anchor_d)
    current = anchor_d
    while len(out) < count:
        current = next_occurrence(rule, current, anchor=anchor_d)
        if current is None:
            break
        out.append(current)
    return out
