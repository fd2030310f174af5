"""Trigger engine — cron, intervals, one-time timestamps and conditions."""

from taskbot.core.triggers.conditions import evaluate_condition
from taskbot.core.triggers.cron import describe_cron, is_valid_cron, next_cron_time
from taskbot.core.triggers.parser import (
    compute_next_run,
    normalize_trigger_spec,
    parse_trigger,
    validate_trigger,
)

__all__ = [
    "compute_next_run",
    "describe_cron",
    "evaluate_condition",
    "is_valid_cron",
    "next_cron_time",
    "normalize_trigger_spec",
    "parse_trigger",
    "validate_trigger",
]
