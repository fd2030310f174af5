"""Trigger union — the closed set of forms a stored trigger spec can take."""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel

TriggerType = Literal["one_time", "scheduled", "condition"]


class CronTrigger(BaseModel):
    kind: Literal["cron"] = "cron"
    expression: str


class IntervalTrigger(BaseModel):
    kind: Literal["interval"] = "interval"
    interval_minutes: float


class OneTimeTrigger(BaseModel):
    kind: Literal["one_time"] = "one_time"
    at: float  # unix seconds


class ConditionTrigger(BaseModel):
    kind: Literal["condition"] = "condition"
    expression: str


class UnparsedTrigger(BaseModel):
    """A spec that could not be understood; never fires."""

    kind: Literal["unparsed"] = "unparsed"
    raw: str
    reason: str


Trigger = Union[CronTrigger, IntervalTrigger, OneTimeTrigger, ConditionTrigger, UnparsedTrigger]
