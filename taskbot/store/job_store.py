"""SQLite job store — jobs, runs, notifications and compiled executors.

Single source of truth for durable state. Tables:
    jobs, runs, executors, notifications
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

from taskbot.core.triggers import compute_next_run, normalize_trigger_spec, validate_trigger
from taskbot.exceptions import JobNotFoundError
from taskbot.store.models import RESULT_SUMMARY_MAX, Job, Run

ZOMBIE_RUN_ERROR = "Interrupted by shutdown"

_JOB_UPDATABLE = {
    "description", "trigger_type", "trigger_spec", "instructions", "status",
    "approval_policy", "model", "max_iterations", "token_budget", "run_count",
    "consecutive_failures", "max_failures", "last_error", "last_run_at",
    "next_run_at", "metadata",
}
_RUN_UPDATABLE = {
    "status", "source", "executor_version", "completed_at", "duration_ms",
    "result_summary", "result_detail", "tool_calls", "input_tokens",
    "output_tokens", "error",
}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class JobStore:
    """SQLite persistence for jobs and their runs."""

    def __init__(
        self,
        db_path: str = "data/taskbot.db",
        max_iterations: int = 30,
        token_budget: int = 50_000,
        max_failures: int = 3,
    ):
        self.db_path = db_path
        # Defaults for jobs created without explicit limits
        self.default_max_iterations = max_iterations
        self.default_token_budget = token_budget
        self.default_max_failures = max_failures
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"JobStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            self._migrate(conn)
            conn.commit()

    def _migrate(self, conn) -> None:
        """Add columns missing in existing databases."""
        run_cols = {row[1] for row in conn.execute("PRAGMA table_info(runs)").fetchall()}
        for col, ddl in [
            ("source", "TEXT"),
            ("executor_version", "INTEGER"),
        ]:
            if col not in run_cols:
                conn.execute(f"ALTER TABLE runs ADD COLUMN {col} {ddl}")

    # ════════════════════════════════════════════════════════════
    # JOBS
    # ════════════════════════════════════════════════════════════

    def create_job(
        self,
        description: str,
        trigger_type: str,
        trigger_spec: str,
        instructions: str | None = None,
        approval_policy: str = "auto",
        model: str | None = None,
        max_iterations: int | None = None,
        token_budget: int | None = None,
        max_failures: int | None = None,
        metadata: dict[str, Any] | None = None,
        now: float | None = None,
    ) -> Job:
        """Normalize, validate and insert a job.

        Raises TriggerParseError for a trigger that could never fire.
        """
        now = time.time() if now is None else now
        spec = trigger_spec
        if trigger_type == "scheduled":
            spec = normalize_trigger_spec(trigger_spec)
        validate_trigger(trigger_type, spec)

        job = Job(
            job_id=_new_id("job"),
            description=description,
            trigger_type=trigger_type,
            trigger_spec=spec.strip(),
            instructions=instructions or description,
            approval_policy=approval_policy,
            model=model,
            max_iterations=_or_default(max_iterations, self.default_max_iterations),
            token_budget=_or_default(token_budget, self.default_token_budget),
            max_failures=_or_default(max_failures, self.default_max_failures),
            next_run_at=compute_next_run(trigger_type, spec, None, now),
            created_at=now,
            updated_at=now,
            metadata=metadata or {},
        )
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO jobs
                   (job_id, description, trigger_type, trigger_spec, instructions,
                    status, approval_policy, model, max_iterations, token_budget,
                    max_failures, next_run_at, created_at, updated_at, metadata)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    job.job_id, job.description, job.trigger_type, job.trigger_spec,
                    job.instructions, job.status, job.approval_policy, job.model,
                    job.max_iterations, job.token_budget, job.max_failures,
                    job.next_run_at, job.created_at, job.updated_at,
                    json.dumps(job.metadata),
                ),
            )
            conn.commit()
        logger.info(f"Job created: {job.job_id} ({trigger_type}: {job.trigger_spec})")
        return job

    def get_job(self, job_id: str) -> Job | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def require_job(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, status: str | None = None) -> list[Job]:
        with self._get_conn() as conn:
            if status:
                rows = conn.execute(
                    "SELECT * FROM jobs WHERE status = ? ORDER BY created_at", (status,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM jobs WHERE status != 'archived' ORDER BY created_at"
                ).fetchall()
        return [_row_to_job(r) for r in rows]

    def update_job(self, job_id: str, now: float | None = None, **fields: Any) -> None:
        unknown = set(fields) - _JOB_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        if not fields:
            return
        if "metadata" in fields:
            fields["metadata"] = json.dumps(fields["metadata"] or {})
        fields["updated_at"] = time.time() if now is None else now
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._get_conn() as conn:
            conn.execute(
                f"UPDATE jobs SET {assignments} WHERE job_id = ?",
                (*fields.values(), job_id),
            )
            conn.commit()

    def delete_job(self, job_id: str) -> bool:
        """Delete a job and its run history. Returns True if the job existed."""
        with self._get_conn() as conn:
            conn.execute("DELETE FROM runs WHERE job_id = ?", (job_id,))
            cur = conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
            conn.commit()
        return cur.rowcount > 0

    def pause_job(self, job_id: str) -> None:
        self.update_job(job_id, status="paused")

    def resume_job(self, job_id: str, now: float | None = None) -> Job:
        """Reactivate a job: recompute next run and clear the failure streak."""
        now = time.time() if now is None else now
        job = self.require_job(job_id)
        self.update_job(
            job_id,
            now=now,
            status="active",
            consecutive_failures=0,
            last_error=None,
            next_run_at=compute_next_run(job.trigger_type, job.trigger_spec, job.last_run_at, now),
        )
        return self.require_job(job_id)

    def get_due_jobs(self, now: float | None = None) -> list[Job]:
        """Active scheduled/one-time jobs whose next run is due, earliest first."""
        now = time.time() if now is None else now
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM jobs
                   WHERE status = 'active' AND trigger_type != 'condition'
                     AND next_run_at IS NOT NULL AND next_run_at <= ?
                   ORDER BY next_run_at ASC""",
                (now,),
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def get_condition_jobs(self) -> list[Job]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM jobs
                   WHERE status = 'active' AND trigger_type = 'condition'
                   ORDER BY created_at"""
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def count_active_jobs(self) -> int:
        with self._get_conn() as conn:
            row = conn.execute("SELECT COUNT(*) FROM jobs WHERE status = 'active'").fetchone()
        return row[0]

    def record_job_success(self, job_id: str, now: float | None = None) -> None:
        now = time.time() if now is None else now
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE jobs
                   SET run_count = run_count + 1, consecutive_failures = 0,
                       last_error = NULL, last_run_at = ?, updated_at = ?
                   WHERE job_id = ?""",
                (now, now, job_id),
            )
            conn.commit()

    def record_job_failure(self, job_id: str, error: str, now: float | None = None) -> int:
        """Increment the failure streak and record the error. Returns the new count."""
        now = time.time() if now is None else now
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE jobs
                   SET run_count = run_count + 1,
                       consecutive_failures = consecutive_failures + 1,
                       last_error = ?, last_run_at = ?, updated_at = ?
                   WHERE job_id = ?""",
                (error, now, now, job_id),
            )
            conn.commit()
            row = conn.execute(
                "SELECT consecutive_failures FROM jobs WHERE job_id = ?", (job_id,)
            ).fetchone()
        return row["consecutive_failures"] if row else 0

    # ════════════════════════════════════════════════════════════
    # RUNS
    # ════════════════════════════════════════════════════════════

    def create_run(
        self,
        job_id: str,
        status: str = "running",
        trigger_source: str = "scheduled",
        now: float | None = None,
    ) -> Run:
        run = Run(
            run_id=_new_id("run"),
            job_id=job_id,
            status=status,
            trigger_source=trigger_source,
            started_at=time.time() if now is None else now,
        )
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO runs (run_id, job_id, status, trigger_source, started_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (run.run_id, run.job_id, run.status, run.trigger_source, run.started_at),
            )
            conn.commit()
        return run

    def get_run(self, run_id: str) -> Run | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)).fetchone()
        return Run.model_validate(dict(row)) if row else None

    def update_run(self, run_id: str, **fields: Any) -> bool:
        """Update a non-terminal run. Returns False if the run is already terminal."""
        unknown = set(fields) - _RUN_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")
        if not fields:
            return False
        if fields.get("result_summary"):
            fields["result_summary"] = fields["result_summary"][:RESULT_SUMMARY_MAX]
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._get_conn() as conn:
            cur = conn.execute(
                f"""UPDATE runs SET {assignments}
                    WHERE run_id = ? AND status NOT IN ('completed', 'failed')""",
                (*fields.values(), run_id),
            )
            conn.commit()
        if cur.rowcount == 0:
            logger.warning(f"Run {run_id} is terminal or missing; update ignored")
            return False
        return True

    def list_runs(self, job_id: str | None = None, limit: int = 20) -> list[Run]:
        with self._get_conn() as conn:
            if job_id:
                rows = conn.execute(
                    "SELECT * FROM runs WHERE job_id = ? ORDER BY started_at DESC LIMIT ?",
                    (job_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM runs ORDER BY started_at DESC LIMIT ?", (limit,)
                ).fetchall()
        return [Run.model_validate(dict(r)) for r in rows]

    def list_pending_approvals(self) -> list[Run]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM runs WHERE status = 'approval_pending' ORDER BY started_at"
            ).fetchall()
        return [Run.model_validate(dict(r)) for r in rows]

    def has_running_run(self, job_id: str) -> bool:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM runs WHERE job_id = ? AND status = 'running' LIMIT 1",
                (job_id,),
            ).fetchone()
        return row is not None

    def has_pending_approval(self, job_id: str) -> bool:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM runs WHERE job_id = ? AND status = 'approval_pending' LIMIT 1",
                (job_id,),
            ).fetchone()
        return row is not None

    def sweep_zombie_runs(self, now: float | None = None) -> int:
        """Fail every run left 'running' by a previous process. Returns the count."""
        now = time.time() if now is None else now
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE runs SET status = 'failed', error = ?, completed_at = ?
                   WHERE status = 'running'""",
                (ZOMBIE_RUN_ERROR, now),
            )
            conn.commit()
        if cur.rowcount:
            logger.warning(f"Swept {cur.rowcount} zombie run(s) to failed")
        return cur.rowcount

    # ════════════════════════════════════════════════════════════
    # NOTIFICATIONS
    # ════════════════════════════════════════════════════════════

    def add_notification(
        self,
        title: str,
        body: str,
        level: str = "info",
        job_id: str | None = None,
        run_id: str | None = None,
    ) -> int:
        with self._get_conn() as conn:
            cur = conn.execute(
                """INSERT INTO notifications (title, body, level, job_id, run_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (title, body, level, job_id, run_id, time.time()),
            )
            conn.commit()
            return cur.lastrowid

    def list_notifications(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM notifications ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [dict(r) for r in rows]


def _or_default(value: int | None, default: int) -> int:
    return default if value is None else value


def _row_to_job(row: sqlite3.Row) -> Job:
    data = dict(row)
    data["metadata"] = json.loads(data.get("metadata") or "{}")
    return Job.model_validate(data)


# ════════════════════════════════════════════════════════════
# SQL SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
-- 1. Jobs
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    trigger_type TEXT NOT NULL,
    trigger_spec TEXT NOT NULL,
    instructions TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    approval_policy TEXT NOT NULL DEFAULT 'auto',
    model TEXT,
    max_iterations INTEGER DEFAULT 30,
    token_budget INTEGER DEFAULT 50000,
    run_count INTEGER DEFAULT 0,
    consecutive_failures INTEGER DEFAULT 0,
    max_failures INTEGER DEFAULT 3,
    last_error TEXT,
    last_run_at REAL,
    next_run_at REAL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    metadata TEXT DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs(status, next_run_at);

-- 2. Runs
CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    status TEXT NOT NULL,
    trigger_source TEXT NOT NULL DEFAULT 'scheduled',
    started_at REAL NOT NULL,
    completed_at REAL,
    duration_ms INTEGER,
    result_summary TEXT,
    result_detail TEXT,
    tool_calls INTEGER DEFAULT 0,
    input_tokens INTEGER DEFAULT 0,
    output_tokens INTEGER DEFAULT 0,
    error TEXT
);
CREATE INDEX IF NOT EXISTS idx_runs_job ON runs(job_id, started_at DESC);
CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status);

-- 3. Compiled executors
CREATE TABLE IF NOT EXISTS executors (
    executor_id TEXT PRIMARY KEY,
    owner_key TEXT NOT NULL,
    version INTEGER NOT NULL,
    steps TEXT NOT NULL,
    validation TEXT NOT NULL,
    stats TEXT NOT NULL,
    success_count INTEGER DEFAULT 0,
    failure_count INTEGER DEFAULT 0,
    cost_saved REAL DEFAULT 0,
    last_used_at REAL,
    created_at REAL NOT NULL,
    superseded_at REAL,
    created_from_run_id TEXT,
    UNIQUE(owner_key, version)
);
CREATE INDEX IF NOT EXISTS idx_executors_owner ON executors(owner_key, superseded_at, version DESC);

-- 4. Notifications
CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    body TEXT,
    level TEXT DEFAULT 'info',
    job_id TEXT,
    run_id TEXT,
    created_at REAL NOT NULL
);
"""
