"""Minimal 5-field cron engine.

Supports ``*``, ``*/N``, ``A-B`` and comma lists in each of the fields
minute, hour, day-of-month, month, day-of-week (0 = Sunday). An
expression is valid only when every field resolves to at least one value.
Matching uses local wall-clock time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

FIELD_LIMITS: list[tuple[int, int]] = [
    (0, 59),  # minute
    (0, 23),  # hour
    (1, 31),  # day-of-month
    (1, 12),  # month
    (0, 6),   # day-of-week (0=Sunday)
]

SEARCH_LIMIT_MINUTES = 366 * 24 * 60


@dataclass(frozen=True)
class CronSchedule:
    """Resolved value sets of a cron expression."""

    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]

    def matches(self, dt: datetime) -> bool:
        # Python: Monday=0 … Sunday=6; cron: Sunday=0
        cron_dow = (dt.weekday() + 1) % 7
        return (
            dt.month in self.months
            and dt.day in self.days
            and cron_dow in self.weekdays
            and dt.hour in self.hours
            and dt.minute in self.minutes
        )


def _to_int(text: str) -> int | None:
    text = text.strip()
    if not text or not text.lstrip("-").isdigit():
        return None
    return int(text)


def parse_field(field: str, lo: int, hi: int) -> set[int]:
    """Resolve one cron field; parts that fall outside the bounds are dropped."""
    values: set[int] = set()
    for part in field.split(","):
        part = part.strip()
        if part == "*":
            values.update(range(lo, hi + 1))
        elif part.startswith("*/"):
            step = _to_int(part[2:])
            if step is None or step <= 0:
                continue
            values.update(range(lo, hi + 1, step))
        elif "-" in part[1:]:
            a_str, _, b_str = part.partition("-")
            a, b = _to_int(a_str), _to_int(b_str)
            if a is None or b is None:
                continue
            values.update(range(max(a, lo), min(b, hi) + 1))
        else:
            n = _to_int(part)
            if n is not None and lo <= n <= hi:
                values.add(n)
    return values


def parse_cron(expression: str) -> CronSchedule | None:
    """Parse a 5-field cron expression. Returns None when invalid."""
    if not expression or not isinstance(expression, str):
        return None
    fields = expression.split()
    if len(fields) != 5:
        return None

    resolved = []
    for field, (lo, hi) in zip(fields, FIELD_LIMITS):
        values = parse_field(field, lo, hi)
        if not values:
            return None
        resolved.append(frozenset(values))
    return CronSchedule(*resolved)


def is_valid_cron(expression: str) -> bool:
    return parse_cron(expression) is not None


def next_cron_time(expression: str, after: datetime) -> datetime | None:
    """First matching minute strictly after ``after``.

    Searches up to 366 days ahead and returns None if the expression is
    unreachable (e.g. ``0 0 31 2 *``).
    """
    schedule = parse_cron(expression)
    if schedule is None:
        return None

    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(SEARCH_LIMIT_MINUTES):
        if schedule.matches(candidate):
            return candidate
        candidate += timedelta(minutes=1)
    return None


_WEEKDAY_NAMES = {
    0: "Sunday", 1: "Monday", 2: "Tuesday", 3: "Wednesday",
    4: "Thursday", 5: "Friday", 6: "Saturday",
}


def describe_cron(expression: str) -> str:
    """Human-readable text for common cron shapes; the raw expression otherwise."""
    fields = expression.split() if expression else []
    if len(fields) != 5:
        return expression
    minute, hour, dom, month, dow = fields

    if minute.startswith("*/") and hour == dom == month == dow == "*":
        n = minute[2:]
        return "every minute" if n == "1" else f"every {n} minutes"
    if expression.strip() == "* * * * *":
        return "every minute"
    if minute.isdigit() and hour == "*" and dom == month == dow == "*":
        return "hourly" if minute == "0" else f"hourly at :{int(minute):02d}"
    if minute.isdigit() and hour.startswith("*/") and dom == month == dow == "*":
        n = hour[2:]
        return "every hour" if n == "1" else f"every {n} hours"
    if minute.isdigit() and hour.isdigit() and month == "*":
        at = f"{int(hour):02d}:{int(minute):02d}"
        if dom == "*" and dow == "*":
            return f"daily at {at}"
        if dom == "*" and dow == "1-5":
            return f"weekdays at {at}"
        if dom == "*" and dow.isdigit() and int(dow) in _WEEKDAY_NAMES:
            return f"every {_WEEKDAY_NAMES[int(dow)]} at {at}"
        if dom.startswith("*/") and dow == "*":
            return f"every {dom[2:]} days at {at}"
        if dom.isdigit() and dow == "*":
            return f"monthly on day {dom} at {at}"
    return expression
