"""JobScheduler — single cooperative poll loop over the job store."""

from __future__ import annotations

import asyncio
import time
from datetime import date, datetime, timedelta
from typing import Any, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from loguru import logger

from taskbot.core.config.schema import Config
from taskbot.core.dispatch import DispatchResult, Dispatcher
from taskbot.core.metrics import collect_metrics
from taskbot.core.pricing import PriceTable
from taskbot.core.scheduler.notify import Notifier
from taskbot.core.triggers import compute_next_run, evaluate_condition
from taskbot.store.job_store import JobStore
from taskbot.store.models import Job, Run

POLL_JOB_ID = "poll"
REJECTED_ERROR = "Rejected by approver"


class JobScheduler:
    """Decide which jobs fire and hand them to the Dispatcher.

    One poll cycle runs at a time: each cycle re-arms a one-shot APScheduler
    DateTrigger for the next one. Dispatches run as asyncio tasks, at most
    ``scheduler.max_concurrent`` at once; jobs beyond the cap stay due and
    are picked up by a later cycle.

    State kept across cycles:
        _in_flight : job_id -> running dispatch task
        _cooldowns : job_id -> last time its condition fired
        _daily_spend : USD spent today, reset on local date change
    """

    def __init__(
        self,
        config: Config,
        store: JobStore,
        dispatcher: Dispatcher,
        prices: PriceTable,
        notifier: Notifier | None = None,
        metrics_provider: Callable[[], dict[str, Any]] = collect_metrics,
        on_run_completed: Callable[[Job, Run], None] | None = None,
        on_approval_needed: Callable[[Job, Run], None] | None = None,
    ):
        self.config = config
        self.store = store
        self.dispatcher = dispatcher
        self.prices = prices
        self.notifier = notifier or Notifier(store)
        self.metrics_provider = metrics_provider
        self.on_run_completed = on_run_completed
        self.on_approval_needed = on_approval_needed

        self._in_flight: dict[str, asyncio.Task] = {}
        self._cooldowns: dict[str, float] = {}
        self._daily_spend = 0.0
        self._spend_date: date = date.today()
        self._budget_notified: date | None = None
        self._running = False
        self._scheduler = AsyncIOScheduler(job_defaults={"coalesce": True, "max_instances": 1})

    # ── Lifecycle ──────────────────────────────────────────

    async def start(self) -> None:
        """Sweep zombie runs and start polling."""
        swept = self.store.sweep_zombie_runs()
        self._scheduler.start()
        self._running = True
        self._arm(0)
        logger.info(
            f"JobScheduler started: {self.store.count_active_jobs()} active jobs, "
            f"{swept} zombie run(s) swept"
        )

    async def stop(self) -> None:
        """Stop polling. In-flight dispatches are left to finish."""
        self._running = False
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info(f"JobScheduler stopped ({len(self._in_flight)} run(s) still in flight)")

    def _arm(self, delay_s: float) -> None:
        self._scheduler.add_job(
            self._poll,
            DateTrigger(run_date=datetime.now() + timedelta(seconds=delay_s)),
            id=POLL_JOB_ID,
            replace_existing=True,
        )

    async def _poll(self) -> None:
        try:
            await self.run_cycle()
        except Exception as e:
            logger.exception(f"Scheduler cycle failed: {e}")
        finally:
            if self._running:
                self._arm(self.next_interval())

    def next_interval(self) -> int:
        cfg = self.config.scheduler
        if self._in_flight:
            return cfg.interval_running_s
        if self.store.count_active_jobs():
            return cfg.interval_active_s
        return cfg.interval_idle_s

    # ── Cycle ──────────────────────────────────────────────

    async def run_cycle(self, now: float | None = None) -> list[asyncio.Task]:
        """Run one scheduling pass. Returns the dispatch tasks spawned."""
        now = time.time() if now is None else now
        cfg = self.config.scheduler

        today = datetime.fromtimestamp(now).date()
        if today != self._spend_date:
            logger.info(f"Daily spend reset (was ${self._daily_spend:.4f} on {self._spend_date})")
            self._daily_spend = 0.0
            self._spend_date = today

        if self._daily_spend >= cfg.daily_budget:
            logger.info(
                f"Daily budget reached (${self._daily_spend:.4f} >= ${cfg.daily_budget:.2f}), "
                "skipping cycle"
            )
            if self._budget_notified != today:
                self._budget_notified = today
                self.notifier.budget_exhausted(self._daily_spend, cfg.daily_budget)
            return []

        spawned: list[asyncio.Task] = []

        due = self.store.get_due_jobs(now)
        for job in due:
            if len(self._in_flight) >= cfg.max_concurrent:
                logger.debug(f"Concurrency cap reached, {job.job_id} deferred")
                break
            if self._is_busy(job.job_id):
                continue
            if self._needs_approval(job):
                self._request_approval(job, "scheduled", now)
                continue
            spawned.append(self._spawn(job, "scheduled"))

        condition_jobs = self.store.get_condition_jobs()
        if condition_jobs:
            metrics = await asyncio.to_thread(self.metrics_provider)
            for job in condition_jobs:
                if len(self._in_flight) >= cfg.max_concurrent:
                    break
                if self._is_busy(job.job_id):
                    continue
                last = self._cooldowns.get(job.job_id)
                if last is not None and now - last < cfg.condition_cooldown_s:
                    continue
                if not evaluate_condition(job.trigger_spec, metrics):
                    continue
                logger.info(f"Condition met for {job.job_id}: {job.trigger_spec}")
                self._cooldowns[job.job_id] = now
                if self._needs_approval(job):
                    self._request_approval(job, "condition", now)
                    continue
                spawned.append(self._spawn(job, "condition"))

        logger.debug(
            f"Cycle: {len(due)} due, {len(condition_jobs)} condition, "
            f"{len(spawned)} spawned, {len(self._in_flight)} in flight"
        )
        return spawned

    def _is_busy(self, job_id: str) -> bool:
        return job_id in self._in_flight or self.store.has_running_run(job_id)

    # ── Approval ───────────────────────────────────────────

    @staticmethod
    def _needs_approval(job: Job) -> bool:
        if job.approval_policy == "approve_always":
            return True
        return job.approval_policy == "approve_first" and job.run_count == 0

    def _request_approval(self, job: Job, trigger_source: str, now: float) -> None:
        if self.store.has_pending_approval(job.job_id):
            logger.debug(f"Job {job.job_id} already has a pending approval")
        else:
            run = self.store.create_run(
                job.job_id, status="approval_pending", trigger_source=trigger_source, now=now
            )
            self.notifier.approval_needed(job, run)
            if self.on_approval_needed:
                self.on_approval_needed(job, run)

        if job.trigger_type == "scheduled":
            self.store.update_job(
                job.job_id, now=now,
                next_run_at=compute_next_run(job.trigger_type, job.trigger_spec, now, now),
            )
        elif job.trigger_type == "one_time":
            self.store.update_job(job.job_id, now=now, next_run_at=None)

    def approve_run(self, run_id: str) -> asyncio.Task | None:
        """Dispatch an ``approval_pending`` run. None if it cannot start now."""
        run = self.store.get_run(run_id)
        if run is None or run.status != "approval_pending":
            logger.warning(f"Run {run_id} is not awaiting approval")
            return None
        job = self.store.require_job(run.job_id)
        if self._is_busy(job.job_id):
            logger.warning(f"Job {job.job_id} is already running; approval of {run_id} deferred")
            return None
        logger.info(f"Run {run_id} approved for job {job.job_id}")
        return self._spawn(job, run.trigger_source, run_id=run.run_id)

    def reject_run(self, run_id: str) -> bool:
        run = self.store.get_run(run_id)
        if run is None or run.status != "approval_pending":
            return False
        now = time.time()
        rejected = self.store.update_run(
            run_id, status="failed", error=REJECTED_ERROR, completed_at=now
        )
        if rejected:
            logger.info(f"Run {run_id} rejected")
        return rejected

    # ── Dispatch ───────────────────────────────────────────

    def _spawn(self, job: Job, trigger_source: str, run_id: str | None = None) -> asyncio.Task:
        logger.info(f"Dispatching {job.job_id} ({trigger_source}): {job.description[:80]}")
        task = asyncio.create_task(self._execute(job, trigger_source, run_id))
        self._in_flight[job.job_id] = task
        return task

    async def _execute(self, job: Job, trigger_source: str, run_id: str | None) -> DispatchResult:
        try:
            try:
                result = await self.dispatcher.dispatch(job, trigger_source, run_id)
            except Exception as e:
                logger.exception(f"Dispatch of {job.job_id} raised unexpectedly")
                result = self._synthetic_failure(job, trigger_source, run_id, e)
            self._on_complete(job, result)
            return result
        finally:
            self._in_flight.pop(job.job_id, None)

    def _synthetic_failure(
        self, job: Job, trigger_source: str, run_id: str | None, exc: Exception
    ) -> DispatchResult:
        now = time.time()
        error = f"{type(exc).__name__}: {exc}"
        run = self.store.get_run(run_id) if run_id else None
        if run is None:
            run = self.store.create_run(job.job_id, trigger_source=trigger_source, now=now)
        self.store.update_run(run.run_id, status="failed", error=error, completed_at=now)
        failures = self.store.record_job_failure(job.job_id, error, now)
        if failures >= job.max_failures:
            self.store.update_job(job.job_id, now=now, status="paused")
        return DispatchResult(
            run=self.store.get_run(run.run_id),
            success=False,
            source="full_agent",
            model=job.model or self.config.assistant.model,
        )

    def _on_complete(self, job: Job, result: DispatchResult) -> None:
        run = result.run
        cost = self.prices.cost(result.model, run.input_tokens, run.output_tokens) + result.replay_cost
        self._daily_spend += cost

        fresh = self.store.get_job(job.job_id)
        if fresh is None:
            logger.info(f"Job {job.job_id} was deleted during its run")
        else:
            if fresh.trigger_type == "scheduled" and fresh.status == "active":
                ref = run.completed_at or time.time()
                self.store.update_job(
                    job.job_id,
                    next_run_at=compute_next_run(fresh.trigger_type, fresh.trigger_spec, ref, ref),
                )
            elif fresh.trigger_type == "one_time" and result.success:
                self.store.update_job(job.job_id, status="completed", next_run_at=None)

            if not result.success and fresh.status == "paused":
                self.notifier.job_paused(fresh)

        self.notifier.run_finished(fresh or job, run)
        if self.on_run_completed:
            self.on_run_completed(fresh or job, run)
        logger.info(
            f"Run {run.run_id} finished: {run.status} via {result.source}, "
            f"${cost:.4f} (today ${self._daily_spend:.4f})"
        )

    # ── Job lifecycle hooks ────────────────────────────────

    def on_job_created(self, job_id: str) -> None:
        logger.debug(f"Job registered with scheduler: {job_id}")
        if self._running:
            self._arm(1)

    def on_job_paused(self, job_id: str) -> None:
        self._cooldowns.pop(job_id, None)

    def on_job_resumed(self, job_id: str) -> Job:
        job = self.store.resume_job(job_id)
        self._cooldowns.pop(job_id, None)
        if self._running:
            self._arm(1)
        return job

    def on_job_deleted(self, job_id: str) -> None:
        self._cooldowns.pop(job_id, None)

    def trigger_manual_run(self, job_id: str) -> asyncio.Task | None:
        """Dispatch ``job_id`` now, outside its schedule. None while it is in flight."""
        if self._is_busy(job_id):
            logger.warning(f"Manual run refused: {job_id} is already running")
            return None
        job = self.store.require_job(job_id)
        return self._spawn(job, "manual")

    async def drain(self) -> None:
        """Wait for every in-flight dispatch to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    @property
    def running_count(self) -> int:
        return len(self._in_flight)

    @property
    def daily_spend(self) -> float:
        return self._daily_spend
