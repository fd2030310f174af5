"""Job tools — create and manage persistent jobs from a conversation."""

from __future__ import annotations

import time
from datetime import datetime
from typing import TYPE_CHECKING

from langchain_core.tools import tool
from loguru import logger

from taskbot.core.triggers import compute_next_run, describe_cron, normalize_trigger_spec, validate_trigger
from taskbot.exceptions import TaskbotError
from taskbot.store.job_store import JobStore
from taskbot.store.models import Job

if TYPE_CHECKING:
    from taskbot.core.scheduler.scheduler import JobScheduler

MAX_RESULTS_LIMIT = 20
DETAIL_MAX = 2000


def time_ago(ts: float, now: float | None = None) -> str:
    diff = int((time.time() if now is None else now) - ts)
    if diff < 60:
        return "just now"
    if diff < 3600:
        return f"{diff // 60}m ago"
    if diff < 86400:
        return f"{diff // 3600}h ago"
    return f"{diff // 86400}d ago"


def _fmt_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def resolve_job_ref(store: JobStore, ref: str) -> tuple[Job | None, list[Job]]:
    """Resolve a job reference to ``(job, ambiguous)``.

    Tries exact id, then case-insensitive description substring, then word
    overlap (query words longer than 2 chars, score >= 0.3). When a tier
    yields several candidates, they are returned as ``ambiguous`` and no
    job is picked.
    """
    job = store.get_job(ref)
    if job:
        return job, []

    jobs = store.list_jobs()
    needle = ref.lower().strip()
    matches = [j for j in jobs if needle and needle in j.description.lower()]
    if len(matches) == 1:
        return matches[0], []
    if matches:
        return None, matches

    words = [w for w in needle.split() if len(w) > 2]
    if not words:
        return None, []
    scored = []
    for j in jobs:
        desc_words = j.description.lower().split()
        overlap = sum(1 for w in words if any(w in d for d in desc_words))
        score = overlap / len(words)
        if score >= 0.3:
            scored.append((score, j))
    scored.sort(key=lambda s: s[0], reverse=True)
    if len(scored) == 1:
        return scored[0][1], []
    return None, [j for _, j in scored]


def _ambiguous(matches: list[Job]) -> str:
    lines = [
        f'  {i}. "{j.description}" ({j.status}) [{j.job_id}]'
        for i, j in enumerate(matches, 1)
    ]
    return "Multiple jobs match. Please be more specific:\n" + "\n".join(lines)


def _schedule_text(job: Job) -> str:
    if job.trigger_type == "scheduled":
        return describe_cron(job.trigger_spec)
    return job.trigger_spec


def make_job_tools(store: JobStore, scheduler: JobScheduler | None = None) -> list:
    """Create job management tools over ``store``; ``scheduler`` receives lifecycle hooks."""

    def _lookup(ref: str) -> Job | str:
        job, ambiguous = resolve_job_ref(store, ref)
        if ambiguous:
            return _ambiguous(ambiguous)
        if job is None:
            return f'No job found matching "{ref}".'
        return job

    @tool
    def create_job(
        description: str,
        trigger_type: str,
        trigger_spec: str,
        instructions: str = "",
        approval_policy: str = "auto",
        model: str | None = None,
    ) -> str:
        """Create a persistent job that runs on a schedule, once, or when a condition holds.

        trigger_type: 'scheduled' (cron or phrase like 'every weekday at 9am'),
        'one_time' (ISO datetime or unix timestamp) or 'condition'
        (e.g. 'disk_percent > 90 AND hour >= 8').
        instructions: complete task text the agent executes on every run.
        approval_policy: 'auto', 'approve_first' or 'approve_always'.
        """
        try:
            job = store.create_job(
                description=description,
                trigger_type=trigger_type,
                trigger_spec=trigger_spec,
                instructions=instructions or description,
                approval_policy=approval_policy,
                model=model,
            )
        except (TaskbotError, ValueError) as e:
            return f"Error: could not create job: {e}"

        if scheduler:
            scheduler.on_job_created(job.job_id)

        lines = [
            "Job created.",
            f"ID: {job.job_id}",
            f"Description: {job.description}",
            f"Trigger: {job.trigger_type}",
            f"Schedule: {_schedule_text(job)}",
        ]
        if job.next_run_at:
            lines.append(f"Next run: {_fmt_ts(job.next_run_at)}")
        lines.append(f"Approval: {job.approval_policy}")
        if job.model:
            lines.append(f"Model: {job.model}")
        return "\n".join(lines)

    @tool
    def list_jobs(status: str | None = None) -> str:
        """List persistent jobs with schedule and latest result. Optional status filter."""
        jobs = store.list_jobs(status)
        if not jobs:
            return f'No jobs with status "{status}".' if status else "No jobs found."

        blocks = []
        for i, j in enumerate(jobs, 1):
            lines = [f"{i}. {j.description}", f"   Status: {j.status} | Trigger: {j.trigger_type}"]
            label = "Condition" if j.trigger_type == "condition" else "Schedule"
            lines.append(f"   {label}: {_schedule_text(j)}")
            if j.next_run_at:
                lines.append(f"   Next run: {_fmt_ts(j.next_run_at)}")
            if j.last_run_at:
                runs = store.list_runs(j.job_id, limit=1)
                if runs:
                    last = runs[0]
                    if last.error:
                        summary = f"Error: {last.error[:100]}"
                    else:
                        summary = (last.result_summary or "No summary")[:120]
                    lines.append(f"   Last result ({time_ago(j.last_run_at)}): {last.status} {summary}")
            lines.append(
                f"   Runs: {j.run_count} | Failures: {j.consecutive_failures} | ID: {j.job_id}"
            )
            blocks.append("\n".join(lines))
        return f"{len(jobs)} job(s):\n\n" + "\n\n".join(blocks)

    @tool
    def pause_job(job_ref: str) -> str:
        """Pause a job by id or description fragment."""
        job = _lookup(job_ref)
        if isinstance(job, str):
            return job
        if job.status == "paused":
            return f'Job "{job.description}" is already paused.'
        if job.status != "active":
            return f'Error: cannot pause job "{job.description}", status is "{job.status}".'
        store.pause_job(job.job_id)
        if scheduler:
            scheduler.on_job_paused(job.job_id)
        return f'Paused job: "{job.description}"'

    @tool
    def resume_job(job_ref: str) -> str:
        """Resume a paused job by id or description fragment."""
        job = _lookup(job_ref)
        if isinstance(job, str):
            return job
        if job.status == "active":
            return f'Job "{job.description}" is already active.'
        if job.status not in ("paused", "failed"):
            return f'Error: cannot resume job "{job.description}", status is "{job.status}".'
        if scheduler:
            updated = scheduler.on_job_resumed(job.job_id)
        else:
            updated = store.resume_job(job.job_id)
        msg = f'Resumed job: "{job.description}"'
        if updated.next_run_at:
            msg += f"\nNext run: {_fmt_ts(updated.next_run_at)}"
        return msg

    @tool
    def delete_job(job_ref: str) -> str:
        """Delete a job and its run history permanently."""
        job = _lookup(job_ref)
        if isinstance(job, str):
            return job
        store.delete_job(job.job_id)
        if scheduler:
            scheduler.on_job_deleted(job.job_id)
        return f'Deleted job: "{job.description}"'

    @tool
    def edit_job(
        job_ref: str,
        description: str | None = None,
        trigger_spec: str | None = None,
        instructions: str | None = None,
        model: str | None = None,
        approval_policy: str | None = None,
    ) -> str:
        """Edit a job's description, schedule, instructions, model or approval policy."""
        job = _lookup(job_ref)
        if isinstance(job, str):
            return job

        updates: dict = {}
        changes: list[str] = []
        if description:
            updates["description"] = description
            changes.append(f'Description -> "{description}"')
        if trigger_spec:
            spec = normalize_trigger_spec(trigger_spec) if job.trigger_type == "scheduled" else trigger_spec
            try:
                validate_trigger(job.trigger_type, spec)
            except TaskbotError as e:
                return f"Error: {e}"
            updates["trigger_spec"] = spec.strip()
            updates["next_run_at"] = compute_next_run(job.trigger_type, spec, None)
            shown = describe_cron(spec) if job.trigger_type == "scheduled" else spec
            changes.append(f"Schedule -> {shown}")
        if instructions:
            updates["instructions"] = instructions
            changes.append("Instructions updated")
        if model:
            updates["model"] = model
            changes.append(f"Model -> {model}")
        if approval_policy:
            updates["approval_policy"] = approval_policy
            changes.append(f"Approval -> {approval_policy}")

        if not changes:
            return f'No changes specified for job "{job.description}".'

        store.update_job(job.job_id, **updates)
        if scheduler:
            scheduler.on_job_created(job.job_id)
        logger.info(f"Edited job {job.job_id}: {', '.join(changes)}")
        return f'Updated job "{job.description}":\n' + "\n".join(f"  - {c}" for c in changes)

    @tool
    def run_job_now(job_ref: str) -> str:
        """Run a job immediately, regardless of its schedule."""
        job = _lookup(job_ref)
        if isinstance(job, str):
            return job
        if scheduler is None:
            return "Error: scheduler is not running; start it with `taskbot run`."
        if not scheduler.trigger_manual_run(job.job_id):
            return f'Job "{job.description}" is already running.'
        return (
            f'Triggered immediate run for job: "{job.description}"\n'
            "Results will be recorded in the job run history."
        )

    @tool
    def get_job_results(job_ref: str, limit: int = 5, detail: bool = False) -> str:
        """Show recent runs of a job with status, duration and summary."""
        job = _lookup(job_ref)
        if isinstance(job, str):
            return job
        limit = min(max(limit or 5, 1), MAX_RESULTS_LIMIT)
        runs = store.list_runs(job.job_id, limit=limit)
        if not runs:
            return f'No run history for job "{job.description}".'

        lines = [f'Run history for "{job.description}" (last {len(runs)}):', ""]
        for run in runs:
            duration = f"{run.duration_ms / 1000:.1f}s" if run.duration_ms else "-"
            source = f" [{run.source}]" if run.source else ""
            lines.append(
                f"{run.status} {_fmt_ts(run.started_at)} ({time_ago(run.started_at)}), {duration}{source}"
            )
            if run.error:
                lines.append(f"  Error: {run.error}")
            elif detail and run.result_detail:
                lines.append(f"  {run.result_detail[:DETAIL_MAX]}")
            elif run.result_summary:
                lines.append(f"  {run.result_summary}")
            if run.tool_calls:
                lines.append(
                    f"  Tools: {run.tool_calls} | Tokens: {run.input_tokens + run.output_tokens}"
                )
            lines.append("")
        return "\n".join(lines)

    return [
        create_job, list_jobs, pause_job, resume_job, delete_job,
        edit_job, run_job_now, get_job_results,
    ]
