"""Notifier — surfaces run outcomes in the log and the notifications table."""

from __future__ import annotations

from loguru import logger

from taskbot.store.job_store import JobStore
from taskbot.store.models import Job, Run

ERROR_PREVIEW_CHARS = 200
SUMMARY_PREVIEW_CHARS = 300


def _preview(text: str | None, limit: int) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else text[:limit] + "..."


class Notifier:
    """Persist short notifications; full detail always stays on the Run."""

    def __init__(self, store: JobStore):
        self.store = store

    def run_finished(self, job: Job, run: Run) -> None:
        if run.status == "completed":
            source = "executor" if run.source == "executor" else "agent"
            body = _preview(run.result_summary, SUMMARY_PREVIEW_CHARS) or "Completed"
            logger.info(f"Job '{job.description}' completed via {source}")
            self.store.add_notification(
                f"Completed: {job.description}", body, "info", job.job_id, run.run_id
            )
        else:
            body = _preview(run.error, ERROR_PREVIEW_CHARS) or "Unknown error"
            logger.error(f"Job '{job.description}' failed: {body}")
            self.store.add_notification(
                f"Failed: {job.description}", body, "error", job.job_id, run.run_id
            )

    def approval_needed(self, job: Job, run: Run) -> None:
        logger.info(f"Job '{job.description}' awaits approval (run {run.run_id})")
        self.store.add_notification(
            f"Approval needed: {job.description}",
            f"Approve with `taskbot runs approve {run.run_id}`",
            "warning",
            job.job_id,
            run.run_id,
        )

    def job_paused(self, job: Job) -> None:
        body = _preview(job.last_error, ERROR_PREVIEW_CHARS)
        logger.warning(f"Job '{job.description}' paused after {job.consecutive_failures} failures")
        self.store.add_notification(f"Paused: {job.description}", body, "warning", job.job_id)

    def budget_exhausted(self, spent: float, budget: float) -> None:
        logger.warning(f"Daily budget exhausted: ${spent:.4f} of ${budget:.2f}")
        self.store.add_notification(
            "Daily budget exhausted",
            f"Spent ${spent:.4f} of ${budget:.2f}; scheduled runs resume tomorrow.",
            "warning",
        )
