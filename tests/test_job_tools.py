"""Tests for taskbot.agent.tools.job_tools."""

from unittest.mock import MagicMock

import pytest

from taskbot.agent.tools.job_tools import make_job_tools, resolve_job_ref, time_ago
from taskbot.app import build_app
from taskbot.core.config import Config
from taskbot.store.job_store import JobStore


@pytest.fixture
def store(tmp_path):
    return JobStore(str(tmp_path / "test.db"))


@pytest.fixture
def tools(store):
    return {t.name: t for t in make_job_tools(store)}


def _job(store, description, spec="0 9 * * *"):
    return store.create_job(description=description, trigger_type="scheduled", trigger_spec=spec)


# --- Reference resolution ---

def test_resolve_exact_id(store):
    job = _job(store, "Check Hacker News for AI posts")
    assert resolve_job_ref(store, job.job_id) == (job, [])


def test_resolve_substring(store):
    job = _job(store, "Check Hacker News for AI posts")
    _job(store, "Backup the photos folder")
    found, ambiguous = resolve_job_ref(store, "hacker news")
    assert found.job_id == job.job_id
    assert ambiguous == []


def test_resolve_ambiguous_substring(store):
    _job(store, "Daily report for sales")
    _job(store, "Daily report for support")
    found, ambiguous = resolve_job_ref(store, "daily report")
    assert found is None
    assert len(ambiguous) == 2


def test_resolve_word_overlap(store):
    job = _job(store, "Check Hacker News for AI posts")
    _job(store, "Backup the photos folder")
    found, _ = resolve_job_ref(store, "hacker posts today")
    assert found.job_id == job.job_id


def test_resolve_word_overlap_threshold_is_inclusive(store):
    job = _job(store, "Check Hacker News for AI posts")
    _job(store, "Backup the photos folder")
    # 3 of 10 words match: exactly the threshold
    ref = "hacker news posts alpha bravo charlie delta echo foxtrot golf"
    assert resolve_job_ref(store, ref) == (job, [])
    # 2 of 10 falls below it
    ref = "hacker news alpha bravo charlie delta echo foxtrot golf hotel"
    assert resolve_job_ref(store, ref) == (None, [])


def test_resolve_no_match(store):
    _job(store, "Backup the photos folder")
    assert resolve_job_ref(store, "weather") == (None, [])


def test_time_ago():
    now = 1_000_000.0
    assert time_ago(now - 5, now) == "just now"
    assert time_ago(now - 600, now) == "10m ago"
    assert time_ago(now - 7200, now) == "2h ago"
    assert time_ago(now - 3 * 86400, now) == "3d ago"


# --- Tools ---

def test_create_and_list(tools, store):
    out = tools["create_job"].invoke({
        "description": "Check HN",
        "trigger_type": "scheduled",
        "trigger_spec": "every weekday at 9am",
    })
    assert out.startswith("Job created.")
    assert "Schedule: weekdays at 09:00" in out
    job = store.list_jobs()[0]
    assert job.trigger_spec == "0 9 * * 1-5"
    assert job.instructions == "Check HN"

    listing = tools["list_jobs"].invoke({})
    assert listing.startswith("1 job(s):")
    assert job.job_id in listing


def test_create_rejects_bad_trigger(tools, store):
    out = tools["create_job"].invoke({
        "description": "x", "trigger_type": "scheduled", "trigger_spec": "whenever",
    })
    assert out.startswith("Error: could not create job")
    assert store.list_jobs() == []


def test_pause_resume_delete(tools, store):
    job = _job(store, "Backup the photos folder")
    assert tools["pause_job"].invoke({"job_ref": "photos"}) == 'Paused job: "Backup the photos folder"'
    assert "already paused" in tools["pause_job"].invoke({"job_ref": "photos"})
    assert store.get_job(job.job_id).status == "paused"

    assert tools["resume_job"].invoke({"job_ref": job.job_id}).startswith("Resumed job:")
    assert store.get_job(job.job_id).status == "active"

    assert tools["delete_job"].invoke({"job_ref": "photos"}) == 'Deleted job: "Backup the photos folder"'
    assert store.get_job(job.job_id) is None
    assert tools["delete_job"].invoke({"job_ref": "photos"}) == 'No job found matching "photos".'


def test_ambiguous_reference_message(tools, store):
    _job(store, "Daily report for sales")
    _job(store, "Daily report for support")
    out = tools["pause_job"].invoke({"job_ref": "daily report"})
    assert out.startswith("Multiple jobs match.")
    assert '"Daily report for sales"' in out


def test_edit_job(tools, store):
    job = _job(store, "Backup the photos folder")
    out = tools["edit_job"].invoke({"job_ref": "photos", "trigger_spec": "every monday at 8am"})
    assert out.startswith('Updated job "Backup the photos folder":')
    assert "Schedule ->" in out
    assert store.get_job(job.job_id).trigger_spec == "0 8 * * 1"

    assert tools["edit_job"].invoke({"job_ref": "photos", "trigger_spec": "sometimes"}).startswith("Error:")
    assert tools["edit_job"].invoke({"job_ref": "photos"}).startswith("No changes specified")


def test_run_job_now(store):
    job = _job(store, "Backup the photos folder")
    without = {t.name: t for t in make_job_tools(store)}
    assert without["run_job_now"].invoke({"job_ref": "photos"}).startswith("Error: scheduler is not running")

    scheduler = MagicMock()
    scheduler.trigger_manual_run.return_value = object()
    tools = {t.name: t for t in make_job_tools(store, scheduler)}
    assert tools["run_job_now"].invoke({"job_ref": "photos"}).startswith("Triggered immediate run")
    scheduler.trigger_manual_run.assert_called_once_with(job.job_id)

    scheduler.trigger_manual_run.return_value = None
    assert "already running" in tools["run_job_now"].invoke({"job_ref": "photos"})


def test_scheduler_hooks(store):
    scheduler = MagicMock()
    scheduler.on_job_resumed.side_effect = lambda job_id: store.resume_job(job_id)
    tools = {t.name: t for t in make_job_tools(store, scheduler)}
    tools["create_job"].invoke({
        "description": "Backup the photos folder", "trigger_type": "scheduled", "trigger_spec": "daily",
    })
    job = store.list_jobs()[0]
    scheduler.on_job_created.assert_called_once_with(job.job_id)

    tools["pause_job"].invoke({"job_ref": "photos"})
    scheduler.on_job_paused.assert_called_once_with(job.job_id)
    tools["resume_job"].invoke({"job_ref": "photos"})
    scheduler.on_job_resumed.assert_called_once_with(job.job_id)


def test_get_job_results(tools, store):
    job = _job(store, "Backup the photos folder")
    assert tools["get_job_results"].invoke({"job_ref": "photos"}).startswith("No run history")

    run = store.create_run(job.job_id)
    store.update_run(
        run.run_id, status="completed", source="executor", duration_ms=1500,
        result_summary="42 photos copied", result_detail="42 photos copied to /backup",
    )
    out = tools["get_job_results"].invoke({"job_ref": "photos"})
    assert "completed" in out
    assert "1.5s [executor]" in out
    assert "42 photos copied" in out
    detailed = tools["get_job_results"].invoke({"job_ref": "photos", "detail": True})
    assert "to /backup" in detailed


def test_create_job_takes_configured_limits(tmp_path):
    cfg = Config(
        assistant={"workspace": str(tmp_path / "ws"), "max_iterations": 8, "token_budget": 20_000},
        scheduler={"default_max_failures": 5},
        database={"path": str(tmp_path / "app.db")},
    )
    bot = build_app(cfg)
    tools = {t.name: t for t in make_job_tools(bot.store)}
    tools["create_job"].invoke({
        "description": "Backup the photos folder", "trigger_type": "scheduled", "trigger_spec": "daily",
    })
    job = bot.store.list_jobs()[0]
    assert (job.max_iterations, job.token_budget, job.max_failures) == (8, 20_000, 5)
