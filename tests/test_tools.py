"""Tests for run tools (filesystem, shell, web) and the ToolRegistry."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from taskbot.agent.tools import RUN_GROUPS, make_tools
from taskbot.agent.tools.filesystem import make_filesystem_tools
from taskbot.agent.tools.shell import make_shell_tools
from taskbot.agent.tools.web import html_to_text, make_web_tools
from taskbot.core.config import Config
from taskbot.store.job_store import JobStore


@pytest.fixture
def cfg():
    return Config(tools={"shell": {"timeout": 5}})


@pytest.fixture
def fs(tmp_path):
    return {t.name: t for t in make_filesystem_tools(tmp_path)}


@pytest.fixture
def shell(cfg, tmp_path):
    return make_shell_tools(cfg, tmp_path)[0]


# --- Filesystem ---

def test_write_read_edit(fs, tmp_path):
    assert fs["write_file"].invoke({"path": "notes/a.md", "content": "hello world"}) == (
        "Written 11 chars to notes/a.md"
    )
    assert (tmp_path / "notes" / "a.md").read_text() == "hello world"
    assert fs["read_file"].invoke({"path": "notes/a.md"}) == "hello world"

    assert fs["edit_file"].invoke(
        {"path": "notes/a.md", "old_text": "world", "new_text": "there"}
    ) == "Edited notes/a.md"
    assert fs["read_file"].invoke({"path": "notes/a.md"}) == "hello there"


def test_edit_requires_single_occurrence(fs):
    fs["write_file"].invoke({"path": "a.txt", "content": "x x"})
    result = fs["edit_file"].invoke({"path": "a.txt", "old_text": "x", "new_text": "y"})
    assert result.startswith("Error: old_text found 2 times")


def test_paths_outside_workspace_rejected(fs):
    assert fs["read_file"].invoke({"path": "../secret"}).startswith("Error: path")
    assert fs["write_file"].invoke({"path": "/etc/evil", "content": "x"}).startswith("Error: path")


def test_missing_file_and_list_dir(fs, tmp_path):
    assert fs["read_file"].invoke({"path": "nope.txt"}) == "Error: file not found: nope.txt"
    assert fs["list_dir"].invoke({"path": "."}) == ".: (empty)"
    (tmp_path / "sub").mkdir()
    (tmp_path / "b.txt").write_text("12345")
    assert fs["list_dir"].invoke({"path": "."}) == "[DIR]  sub\n[5B]  b.txt"
    assert fs["list_dir"].invoke({"path": "b.txt"}).startswith("Error: not a directory")


# --- Shell ---

@pytest.mark.asyncio
async def test_exec_runs_in_workspace(shell, tmp_path):
    assert await shell.ainvoke({"command": "echo hello"}) == "hello"
    assert await shell.ainvoke({"command": "pwd"}) == str(tmp_path)


@pytest.mark.asyncio
async def test_exec_nonzero_exit_is_error(shell):
    result = await shell.ainvoke({"command": "echo oops; exit 3"})
    assert result.startswith("Error: exit code 3")
    assert "oops" in result


@pytest.mark.asyncio
async def test_exec_blocks_dangerous_commands(shell):
    result = await shell.ainvoke({"command": "rm -rf /"})
    assert result.startswith("Command blocked")


@pytest.mark.asyncio
async def test_exec_timeout(tmp_path):
    shell = make_shell_tools(Config(tools={"shell": {"timeout": 1}}), tmp_path)[0]
    result = await shell.ainvoke({"command": "sleep 5"})
    assert result.startswith("Error: command timed out")


@pytest.mark.asyncio
async def test_cancelled_exec_kills_command(shell, tmp_path):
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(shell.ainvoke({"command": "sleep 2; touch marker"}), 0.3)
    await asyncio.sleep(2.5)
    assert not (tmp_path / "marker").exists()


@pytest.mark.asyncio
async def test_exec_exports_scratch_as_tmpdir(cfg, tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    shell = make_shell_tools(cfg, tmp_path, scratch)[0]
    assert await shell.ainvoke({"command": "echo $TMPDIR"}) == str(scratch)


# --- Web ---

@pytest.mark.asyncio
async def test_web_search_without_keys(cfg, monkeypatch):
    monkeypatch.delenv("TAVILY_API_KEY", raising=False)
    monkeypatch.delenv("BRAVE_API_KEY", raising=False)
    search = make_web_tools(cfg)[0]
    result = await search.ainvoke({"query": "python"})
    assert result.startswith("Error: web search unavailable")


@pytest.mark.asyncio
async def test_web_fetch_rejects_non_http(cfg):
    fetch = make_web_tools(cfg)[1]
    assert await fetch.ainvoke({"url": "ftp://example.com"}) == "Error: not an http(s) URL: ftp://example.com"


@pytest.mark.asyncio
async def test_web_search_falls_back_to_brave(cfg, monkeypatch):
    monkeypatch.setenv("TAVILY_API_KEY", "tv")
    monkeypatch.setenv("BRAVE_API_KEY", "br")
    tavily = AsyncMock(side_effect=httpx.ConnectError("down"))
    brave = AsyncMock(return_value=[("Python", "https://python.org", "Home page")])
    with patch("taskbot.agent.tools.web._tavily_search", tavily), \
            patch("taskbot.agent.tools.web._brave_search", brave):
        result = await make_web_tools(cfg)[0].ainvoke({"query": "python", "count": 50})

    assert result.startswith("Results for: python")
    assert "1. Python\n   https://python.org\n   Home page" in result
    assert brave.await_args.args == ("python", "br", 10)


@pytest.mark.asyncio
async def test_web_search_all_backends_fail(cfg, monkeypatch):
    monkeypatch.setenv("TAVILY_API_KEY", "tv")
    monkeypatch.delenv("BRAVE_API_KEY", raising=False)
    tavily = AsyncMock(side_effect=httpx.ConnectError("down"))
    with patch("taskbot.agent.tools.web._tavily_search", tavily):
        result = await make_web_tools(cfg)[0].ainvoke({"query": "python"})
    assert result == "Error: search failed: down"


def test_html_to_text():
    html = (
        "<html><head><style>p {color: red}</style><script>var x = 1;</script></head>"
        "<body><h1>Title</h1><p>Fish &amp; chips</p><p>a   b</p></body></html>"
    )
    assert html_to_text(html) == "Title\nFish & chips\na b"


# --- Registry ---

def test_registry_groups(cfg, tmp_path):
    registry = make_tools(cfg, tmp_path)
    summary = registry.get_groups_summary()
    assert set(summary) == set(RUN_GROUPS)
    assert summary["shell"] == ["exec_command"]
    assert "web_fetch" in registry
    assert "create_job" not in registry
    assert len(registry.get_tools_for_groups(["filesystem"])) == 4


def test_registry_with_job_tools(cfg, tmp_path):
    store = JobStore(str(tmp_path / "test.db"))
    registry = make_tools(cfg, tmp_path / "ws", store=store)
    assert "create_job" in registry
    names = [t.name for t in registry.get_tools_for_groups(["jobs"])]
    assert names[:2] == ["create_job", "list_jobs"]
    assert len(registry) == len(registry.get_all_tools())
