"""Trigger spec parsing — phrase normalization and next-run computation."""

from __future__ import annotations

import json
import math
import re
import time
from datetime import datetime
from typing import Any

from taskbot.core.triggers.conditions import ConditionError, check_condition
from taskbot.core.triggers.cron import is_valid_cron, next_cron_time
from taskbot.core.triggers.types import (
    ConditionTrigger,
    CronTrigger,
    IntervalTrigger,
    OneTimeTrigger,
    Trigger,
    UnparsedTrigger,
)
from taskbot.exceptions import TriggerParseError

# ════════════════════════════════════════════════════════════
# PHRASE NORMALIZATION
# ════════════════════════════════════════════════════════════

_DAY_NUMBERS = {
    "sunday": 0, "monday": 1, "tuesday": 2, "wednesday": 3,
    "thursday": 4, "friday": 5, "saturday": 6,
}
_DAY_RE = re.compile(
    r"\b(sun|mon|tue|tues|wed|thu|thur|thurs|fri|sat)(?:day|nesday|rsday|urday|sday)?s?\b"
)

_AT_TIME_RE = re.compile(r"\bat\s+(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b")
_MERIDIEM_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b")
_CLOCK_RE = re.compile(r"\b(\d{1,2}):(\d{2})\b")

_EVERY_MINUTES_RE = re.compile(r"every\s+(\d+)?\s*(?:minutes?|mins?)\b")
_EVERY_SECONDS_RE = re.compile(r"every\s+(\d+)\s*(?:seconds?|secs?)\b")
_EVERY_HOURS_RE = re.compile(r"every\s+(\d+)?\s*(?:hours?|hrs?)\b")
_EVERY_DAYS_RE = re.compile(r"every\s+(\d+)?\s*days?\b")


def _extract_time(text: str) -> tuple[int, int] | None:
    """(hour, minute) from 'at 9', '9am', '17:30', 'at 8:15 pm'; None if absent/invalid."""
    m = _AT_TIME_RE.search(text) or _MERIDIEM_RE.search(text) or _CLOCK_RE.search(text)
    if not m:
        return None
    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    meridiem = m.group(3) if m.lastindex and m.lastindex >= 3 else None
    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def _extract_weekdays(text: str) -> str | None:
    if re.search(r"\bweekdays?\b", text):
        return "1-5"
    if re.search(r"\bweekends?\b", text):
        return "0,6"
    days: list[int] = []
    for m in _DAY_RE.finditer(text):
        prefix = m.group(1)[:3]
        for name, num in _DAY_NUMBERS.items():
            if name.startswith(prefix) and num not in days:
                days.append(num)
    if not days:
        return None
    return ",".join(str(d) for d in sorted(days))


def _interval_json(minutes: int) -> str:
    return json.dumps({"intervalMinutes": minutes})


def _is_structured(text: str) -> bool:
    """True for specs that are already cron or a recognised JSON object."""
    if is_valid_cron(text):
        return True
    if not text.startswith("{"):
        return False
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return False
    if not isinstance(obj, dict):
        return False
    return (
        isinstance(obj.get("cron"), str) and is_valid_cron(obj["cron"])
    ) or _interval_minutes(obj) is not None


def normalize_trigger_spec(spec: str) -> str:
    """Rewrite common free-text schedule phrases to cron.

    Valid cron and valid JSON pass through unchanged, as does any phrase
    that is not recognised (it then fails validation).
    """
    if not spec or not isinstance(spec, str):
        return spec
    trimmed = spec.strip()
    if _is_structured(trimmed):
        return trimmed

    lower = trimmed.lower()
    at = _extract_time(lower)
    if at is None and "noon" in lower:
        at = (12, 0)
    hour, minute = at if at else (0, 0)

    m = _EVERY_SECONDS_RE.search(lower)
    if m:
        seconds = int(m.group(1))
        if seconds > 0:
            minutes = math.ceil(seconds / 60)
            return "* * * * *" if minutes == 1 else (
                f"*/{minutes} * * * *" if minutes <= 59 else _interval_json(minutes)
            )

    m = _EVERY_MINUTES_RE.search(lower)
    if m:
        n = int(m.group(1)) if m.group(1) else 1
        if n == 1:
            return "* * * * *"
        if 1 < n <= 59:
            return f"*/{n} * * * *"
        if n > 59:
            return _interval_json(n)

    m = _EVERY_HOURS_RE.search(lower)
    if m:
        n = int(m.group(1)) if m.group(1) else 1
        if n == 1:
            return "0 * * * *"
        if 1 < n <= 23:
            return f"0 */{n} * * *"
        if n > 23:
            return _interval_json(n * 60)

    dow = _extract_weekdays(lower)
    if dow is not None:
        return f"{minute} {hour} * * {dow}"

    m = _EVERY_DAYS_RE.search(lower)
    if m:
        n = int(m.group(1)) if m.group(1) else 1
        if n == 1:
            return f"{minute} {hour} * * *"
        if 1 < n <= 31:
            return f"{minute} {hour} */{n} * *"

    if "hourly" in lower:
        return "0 * * * *"
    if "weekly" in lower or "every week" in lower:
        return f"{minute} {hour} * * 0"
    if "monthly" in lower or "every month" in lower:
        return f"{minute} {hour} 1 * *"
    if "morning" in lower:
        hour, minute = at if at else (9, 0)
        return f"{minute} {hour} * * *"
    if "evening" in lower:
        hour, minute = at if at else (18, 0)
        return f"{minute} {hour} * * *"
    if "noon" in lower:
        return "0 12 * * *"
    if "daily" in lower or "every day" in lower or "each day" in lower or "midnight" in lower:
        return f"{minute} {hour} * * *"

    return trimmed


# ════════════════════════════════════════════════════════════
# PARSING
# ════════════════════════════════════════════════════════════


def _interval_minutes(obj: dict[str, Any]) -> float | None:
    for key in ("intervalMinutes", "interval_minutes"):
        value = obj.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return float(value)
    return None


def _parse_timestamp(spec: str) -> float | None:
    try:
        return float(spec)
    except ValueError:
        pass
    text = spec.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).timestamp()
    except ValueError:
        return None


def parse_trigger(trigger_type: str, spec: str | None) -> Trigger:
    """Parse a stored spec into the trigger union. Never raises."""
    raw = (spec or "").strip()

    if trigger_type == "condition":
        try:
            check_condition(raw)
        except ConditionError as e:
            return UnparsedTrigger(raw=raw, reason=str(e))
        return ConditionTrigger(expression=raw)

    if trigger_type == "one_time":
        at = _parse_timestamp(raw) if raw else None
        if at is None:
            return UnparsedTrigger(raw=raw, reason="not a unix timestamp or ISO-8601 datetime")
        return OneTimeTrigger(at=at)

    if trigger_type == "scheduled":
        if raw.startswith("{"):
            try:
                obj = json.loads(raw)
            except json.JSONDecodeError as e:
                return UnparsedTrigger(raw=raw, reason=f"invalid JSON: {e}")
            if isinstance(obj, dict):
                cron = obj.get("cron")
                if isinstance(cron, str) and is_valid_cron(cron):
                    return CronTrigger(expression=cron.strip())
                minutes = _interval_minutes(obj)
                if minutes is not None:
                    return IntervalTrigger(interval_minutes=minutes)
            return UnparsedTrigger(raw=raw, reason="expected {\"cron\": ...} or {\"intervalMinutes\": N}")
        if is_valid_cron(raw):
            return CronTrigger(expression=raw)
        return UnparsedTrigger(raw=raw, reason="not a valid 5-field cron expression")

    return UnparsedTrigger(raw=raw, reason=f"unknown trigger type '{trigger_type}'")


def validate_trigger(trigger_type: str, spec: str | None) -> Trigger:
    """Parse and reject any trigger that could never fire."""
    trigger = parse_trigger(trigger_type, spec)
    if isinstance(trigger, UnparsedTrigger):
        raise TriggerParseError(trigger_type, trigger.raw, trigger.reason)
    if isinstance(trigger, CronTrigger) and next_cron_time(trigger.expression, datetime.now()) is None:
        raise TriggerParseError(trigger_type, trigger.expression, "schedule never occurs")
    return trigger


def compute_next_run(
    trigger_type: str,
    spec: str | None,
    last_run_at: float | None = None,
    now: float | None = None,
) -> float | None:
    """Next firing time in unix seconds, or None (condition jobs, unparsed specs)."""
    now = time.time() if now is None else now
    trigger = parse_trigger(trigger_type, spec)

    if isinstance(trigger, CronTrigger):
        nxt = next_cron_time(trigger.expression, datetime.fromtimestamp(now))
        return nxt.timestamp() if nxt else None
    if isinstance(trigger, IntervalTrigger):
        base = last_run_at or now
        return max(base + trigger.interval_minutes * 60, now)
    if isinstance(trigger, OneTimeTrigger):
        return trigger.at
    return None
