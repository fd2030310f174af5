"""Durable state — jobs, runs and compiled executors in SQLite."""

from taskbot.store.executor_cache import ExecutorCache
from taskbot.store.job_store import JobStore
from taskbot.store.models import Executor, Job, Run, TraceStep

__all__ = ["ExecutorCache", "Executor", "Job", "JobStore", "Run", "TraceStep"]
