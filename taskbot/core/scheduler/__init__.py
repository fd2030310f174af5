"""Scheduler — poll loop, approvals and notifications."""

from taskbot.core.scheduler.notify import Notifier
from taskbot.core.scheduler.scheduler import JobScheduler

__all__ = ["JobScheduler", "Notifier"]
