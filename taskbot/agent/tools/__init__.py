"""Tool system — ToolRegistry and factories for run tools and job tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from langchain_core.tools import BaseTool

from taskbot.agent.tools.filesystem import make_filesystem_tools
from taskbot.agent.tools.job_tools import make_job_tools
from taskbot.agent.tools.shell import make_shell_tools
from taskbot.agent.tools.web import make_web_tools
from taskbot.core.config.schema import Config

if TYPE_CHECKING:
    from taskbot.core.scheduler.scheduler import JobScheduler
    from taskbot.store.job_store import JobStore


@dataclass
class ToolInfo:
    """Metadata for a registered tool."""

    tool: BaseTool
    group: str
    requires: list[str] = field(default_factory=list)


class ToolRegistry:
    """Tools grouped by concern (filesystem, shell, web, jobs)."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolInfo] = {}
        self._groups: dict[str, list[str]] = {}

    def register_group(self, group: str, tools: list, requires: list[str] | None = None) -> None:
        self._groups[group] = []
        for t in tools:
            self._tools[t.name] = ToolInfo(tool=t, group=group, requires=requires or [])
            self._groups[group].append(t.name)

    def get_all_tools(self) -> list:
        return [info.tool for info in self._tools.values()]

    def get_tools_for_groups(self, groups: list[str]) -> list:
        """Tool objects for ``groups``, in registration order."""
        return [self._tools[name].tool for g in groups for name in self._groups.get(g, [])]

    def get_groups_summary(self) -> dict[str, list[str]]:
        return {g: list(names) for g, names in self._groups.items()}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools


RUN_GROUPS = ["filesystem", "shell", "web"]


def make_tools(
    config: Config,
    workspace: Path,
    store: JobStore | None = None,
    scheduler: JobScheduler | None = None,
    scratch: Path | None = None,
) -> ToolRegistry:
    """Create tools bound to ``workspace`` and return a ToolRegistry.

    Parameters
    ----------
    config : Config
        Application config.
    workspace : Path
        Directory the filesystem and shell tools are confined to.
    store : JobStore, optional
        If provided, the job management tools are registered as ``jobs``.
    scheduler : JobScheduler, optional
        Receives lifecycle hooks from the job tools.
    scratch : Path, optional
        Per-run temp dir, exported to shell commands as ``TMPDIR``.
    """
    registry = ToolRegistry()
    registry.register_group("filesystem", make_filesystem_tools(workspace))
    registry.register_group("shell", make_shell_tools(config, workspace, scratch))
    registry.register_group("web", make_web_tools(config))
    if store is not None:
        registry.register_group("jobs", make_job_tools(store, scheduler), requires=["store"])
    return registry


__all__ = ["RUN_GROUPS", "ToolInfo", "ToolRegistry", "make_tools"]
