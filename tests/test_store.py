"""Tests for taskbot.store.job_store."""

import pytest

from taskbot.exceptions import JobNotFoundError, TriggerParseError
from taskbot.store.job_store import ZOMBIE_RUN_ERROR, JobStore
from taskbot.store.models import RESULT_SUMMARY_MAX

NOW = 1_767_600_000.0  # 2026-01-05


@pytest.fixture
def store(tmp_path):
    return JobStore(str(tmp_path / "test.db"))


def _job(store, **kw):
    defaults = dict(
        description="Check Hacker News for AI posts",
        trigger_type="scheduled",
        trigger_spec="0 9 * * *",
        now=NOW,
    )
    defaults.update(kw)
    return store.create_job(**defaults)


# ── Jobs ───────────────────────────────────────────────────


def test_create_job_defaults(store):
    job = _job(store)
    assert job.job_id.startswith("job_")
    assert job.status == "active"
    assert job.instructions == job.description
    assert job.next_run_at is not None and job.next_run_at > NOW
    assert store.get_job(job.job_id) == job


def test_create_job_normalizes_phrase(store):
    job = _job(store, trigger_spec="every weekday at 9am")
    assert job.trigger_spec == "0 9 * * 1-5"


def test_create_job_rejects_bad_trigger(store):
    with pytest.raises(TriggerParseError):
        _job(store, trigger_spec="whenever it feels right")
    with pytest.raises(TriggerParseError):
        _job(store, trigger_type="condition", trigger_spec="disk_percent >>")
    assert store.list_jobs() == []


def test_condition_job_has_no_next_run(store):
    job = _job(store, trigger_type="condition", trigger_spec="disk_percent > 90")
    assert job.next_run_at is None
    assert [j.job_id for j in store.get_condition_jobs()] == [job.job_id]
    assert store.get_due_jobs(NOW + 10**9) == []


def test_require_job_missing(store):
    with pytest.raises(JobNotFoundError):
        store.require_job("job_nope")


def test_update_job_whitelist(store):
    job = _job(store)
    store.update_job(job.job_id, description="New", metadata={"k": 1})
    fresh = store.get_job(job.job_id)
    assert fresh.description == "New"
    assert fresh.metadata == {"k": 1}
    with pytest.raises(ValueError):
        store.update_job(job.job_id, job_id="hack")


def test_due_jobs_ordered_and_filtered(store):
    late = _job(store, description="late")
    early = _job(store, description="early")
    paused = _job(store, description="paused")
    store.update_job(late.job_id, next_run_at=NOW - 10)
    store.update_job(early.job_id, next_run_at=NOW - 100)
    store.update_job(paused.job_id, next_run_at=NOW - 1000)
    store.pause_job(paused.job_id)

    due = store.get_due_jobs(NOW)
    assert [j.description for j in due] == ["early", "late"]


def test_list_jobs_hides_archived(store):
    a = _job(store, description="a")
    b = _job(store, description="b")
    store.update_job(b.job_id, status="archived")
    assert [j.job_id for j in store.list_jobs()] == [a.job_id]
    assert [j.job_id for j in store.list_jobs("archived")] == [b.job_id]
    assert store.count_active_jobs() == 1


def test_failure_streak_and_success_reset(store):
    job = _job(store)
    assert store.record_job_failure(job.job_id, "boom", NOW) == 1
    assert store.record_job_failure(job.job_id, "boom again", NOW) == 2
    failed = store.get_job(job.job_id)
    assert failed.last_error == "boom again"
    assert failed.run_count == 2

    store.record_job_success(job.job_id, NOW + 60)
    ok = store.get_job(job.job_id)
    assert ok.consecutive_failures == 0
    assert ok.last_error is None
    assert ok.run_count == 3
    assert ok.last_run_at == NOW + 60


def test_resume_job_recomputes_and_clears(store):
    job = _job(store)
    store.record_job_failure(job.job_id, "x", NOW)
    store.update_job(job.job_id, status="paused", next_run_at=None)
    resumed = store.resume_job(job.job_id, now=NOW)
    assert resumed.status == "active"
    assert resumed.consecutive_failures == 0
    assert resumed.next_run_at > NOW


def test_delete_job_removes_runs(store):
    job = _job(store)
    store.create_run(job.job_id)
    assert store.delete_job(job.job_id)
    assert store.get_job(job.job_id) is None
    assert store.list_runs(job.job_id) == []
    assert not store.delete_job(job.job_id)


# ── Runs ───────────────────────────────────────────────────


def test_run_lifecycle(store):
    job = _job(store)
    run = store.create_run(job.job_id, trigger_source="manual", now=NOW)
    assert run.status == "running"
    assert store.has_running_run(job.job_id)

    long_text = "x" * 2000
    assert store.update_run(
        run.run_id, status="completed", completed_at=NOW + 5,
        result_summary=long_text, result_detail=long_text, source="full_agent",
    )
    done = store.get_run(run.run_id)
    assert done.is_terminal
    assert len(done.result_summary) == RESULT_SUMMARY_MAX
    assert len(done.result_detail) == 2000
    assert not store.has_running_run(job.job_id)


def test_terminal_runs_are_immutable(store):
    job = _job(store)
    run = store.create_run(job.job_id)
    store.update_run(run.run_id, status="failed", error="first")
    assert not store.update_run(run.run_id, status="completed", error=None)
    assert store.get_run(run.run_id).status == "failed"
    assert store.get_run(run.run_id).error == "first"


def test_pending_approvals(store):
    job = _job(store)
    run = store.create_run(job.job_id, status="approval_pending")
    assert store.has_pending_approval(job.job_id)
    assert [r.run_id for r in store.list_pending_approvals()] == [run.run_id]
    assert not store.has_running_run(job.job_id)


def test_sweep_zombie_runs(store):
    job = _job(store)
    r1 = store.create_run(job.job_id)
    r2 = store.create_run(job.job_id, status="approval_pending")
    assert store.sweep_zombie_runs(NOW) == 1
    swept = store.get_run(r1.run_id)
    assert swept.status == "failed"
    assert swept.error == ZOMBIE_RUN_ERROR
    assert store.get_run(r2.run_id).status == "approval_pending"


def test_list_runs_newest_first(store):
    job = _job(store)
    old = store.create_run(job.job_id, now=NOW)
    new = store.create_run(job.job_id, now=NOW + 100)
    assert [r.run_id for r in store.list_runs(job.job_id)] == [new.run_id, old.run_id]
    assert len(store.list_runs(job.job_id, limit=1)) == 1


def test_notifications(store):
    store.add_notification("Completed: x", "done", "info", job_id="job_1")
    store.add_notification("Failed: y", "boom", "error")
    notes = store.list_notifications()
    assert [n["title"] for n in notes] == ["Failed: y", "Completed: x"]


def test_create_job_uses_store_defaults(tmp_path):
    store = JobStore(str(tmp_path / "limits.db"), max_iterations=12, token_budget=8_000, max_failures=5)
    job = _job(store)
    assert (job.max_iterations, job.token_budget, job.max_failures) == (12, 8_000, 5)

    explicit = _job(store, max_iterations=4, max_failures=1)
    assert (explicit.max_iterations, explicit.token_budget, explicit.max_failures) == (4, 8_000, 1)
