"""Executor cache — versioned, health-gated storage of compiled executors."""

from __future__ import annotations

import json
import sqlite3
import time
import uuid

from loguru import logger

from taskbot.store.job_store import JobStore
from taskbot.store.models import Executor

MAX_EXECUTOR_FAILURES = 3
STALE_DAYS = 30


class ExecutorCache:
    """Lookup and persistence of executors keyed by owner (the job id).

    At most one executor per owner key is active (``superseded_at`` unset).
    Health gates run at lookup time: too many consecutive failures or a
    long period without use retires the executor on the spot.
    """

    def __init__(
        self,
        store: JobStore,
        max_failures: int = MAX_EXECUTOR_FAILURES,
        stale_days: int = STALE_DAYS,
    ):
        self.store = store
        self.max_failures = max_failures
        self.stale_seconds = stale_days * 86_400

    # ── Lookup ─────────────────────────────────────────────

    def lookup(self, owner_key: str, now: float | None = None) -> Executor | None:
        """Highest-version active executor for ``owner_key`` that passes health gates."""
        now = time.time() if now is None else now
        with self.store._get_conn() as conn:
            row = conn.execute(
                """SELECT * FROM executors
                   WHERE owner_key = ? AND superseded_at IS NULL
                   ORDER BY version DESC LIMIT 1""",
                (owner_key,),
            ).fetchone()
        if row is None:
            return None

        executor = _row_to_executor(row)
        if executor.failure_count >= self.max_failures:
            logger.info(
                f"Executor {executor.executor_id} v{executor.version} retired: "
                f"{executor.failure_count} consecutive failures"
            )
            self.supersede(executor.executor_id, now=now)
            return None

        last_used = executor.last_used_at or executor.created_at
        if now - last_used > self.stale_seconds:
            logger.info(f"Executor {executor.executor_id} v{executor.version} retired: stale")
            self.supersede(executor.executor_id, now=now)
            return None

        return executor

    def history(self, owner_key: str) -> list[Executor]:
        """All versions for a key, newest first."""
        with self.store._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM executors WHERE owner_key = ? ORDER BY version DESC",
                (owner_key,),
            ).fetchall()
        return [_row_to_executor(r) for r in rows]

    def list_active(self) -> list[Executor]:
        with self.store._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM executors WHERE superseded_at IS NULL
                   ORDER BY created_at DESC"""
            ).fetchall()
        return [_row_to_executor(r) for r in rows]

    # ── Save ───────────────────────────────────────────────

    def save(self, executor: Executor, now: float | None = None) -> Executor:
        """Insert ``executor`` as the new active version for its owner key.

        Version assignment and superseding run in one transaction, so the
        key never has two active versions and numbers are never reused.
        """
        now = time.time() if now is None else now
        with self.store._get_conn() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT COALESCE(MAX(version), 0) FROM executors WHERE owner_key = ?",
                    (executor.owner_key,),
                ).fetchone()
                version = row[0] + 1
                conn.execute(
                    """UPDATE executors SET superseded_at = ?
                       WHERE owner_key = ? AND superseded_at IS NULL""",
                    (now, executor.owner_key),
                )
                saved = executor.model_copy(update={
                    "executor_id": executor.executor_id or f"exe_{uuid.uuid4().hex[:12]}",
                    "version": version,
                    "created_at": now,
                    "superseded_at": None,
                })
                conn.execute(
                    """INSERT INTO executors
                       (executor_id, owner_key, version, steps, validation,
                        stats, success_count, failure_count, cost_saved, last_used_at,
                        created_at, superseded_at, created_from_run_id)
                       VALUES (?, ?, ?, ?, ?, ?, 0, 0, 0, NULL, ?, NULL, ?)""",
                    (
                        saved.executor_id, saved.owner_key, version,
                        json.dumps([s.model_dump() for s in saved.steps]),
                        saved.validation.model_dump_json(),
                        saved.stats.model_dump_json(),
                        now, saved.created_from_run_id,
                    ),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        logger.info(
            f"Executor saved: {saved.owner_key} v{version} "
            f"({saved.stats.deterministic_steps}/{saved.stats.total_steps} deterministic)"
        )
        return saved

    # ── Health ─────────────────────────────────────────────

    def record_success(self, executor_id: str, cost_saved: float, now: float | None = None) -> None:
        now = time.time() if now is None else now
        with self.store._get_conn() as conn:
            conn.execute(
                """UPDATE executors
                   SET success_count = success_count + 1, failure_count = 0,
                       cost_saved = cost_saved + ?, last_used_at = ?
                   WHERE executor_id = ?""",
                (cost_saved, now, executor_id),
            )
            conn.commit()

    def record_failure(self, executor_id: str, now: float | None = None) -> int:
        """Count a failed replay; retires the executor at the failure ceiling."""
        now = time.time() if now is None else now
        with self.store._get_conn() as conn:
            conn.execute(
                """UPDATE executors
                   SET failure_count = failure_count + 1, last_used_at = ?
                   WHERE executor_id = ?""",
                (now, executor_id),
            )
            row = conn.execute(
                "SELECT failure_count FROM executors WHERE executor_id = ?", (executor_id,)
            ).fetchone()
            conn.commit()
        failures = row[0] if row else 0
        if failures >= self.max_failures:
            logger.info(f"Executor {executor_id} retired: {failures} consecutive failures")
            self.supersede(executor_id, now=now)
        return failures

    def supersede(self, executor_id: str, now: float | None = None) -> None:
        now = time.time() if now is None else now
        with self.store._get_conn() as conn:
            conn.execute(
                """UPDATE executors SET superseded_at = ?
                   WHERE executor_id = ? AND superseded_at IS NULL""",
                (now, executor_id),
            )
            conn.commit()

    def get(self, executor_id: str) -> Executor | None:
        with self.store._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM executors WHERE executor_id = ?", (executor_id,)
            ).fetchone()
        return _row_to_executor(row) if row else None


def _row_to_executor(row: sqlite3.Row) -> Executor:
    data = dict(row)
    data["steps"] = json.loads(data["steps"])
    data["validation"] = json.loads(data["validation"])
    data["stats"] = json.loads(data["stats"])
    return Executor.model_validate(data)
