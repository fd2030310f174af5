"""Execution contexts — per-run tool set and scratch space over the shared workspace."""

from __future__ import annotations

import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from taskbot.agent.tools import RUN_GROUPS, make_tools
from taskbot.core.config.schema import Config


@dataclass
class ExecutionContext:
    """Resources owned by a single run.

    ``workspace`` is the persistent directory the tools work in; files a job
    writes there outlive the run. ``scratch`` is private to the run and is
    removed on release.
    """

    context_id: str
    workspace: Path
    tools: list = field(default_factory=list)
    scratch: Path | None = None
    aborted: bool = False

    def abort(self) -> None:
        self.aborted = True

    def is_aborted(self) -> bool:
        return self.aborted


class WorkspaceContextProvider:
    """Bind fresh tools to the configured workspace, plus a scratch dir, per run."""

    def __init__(self, config: Config, scratch_root: Path | None = None):
        self.config = config
        self.workspace = config.workspace_path
        self.scratch_root = (scratch_root or self.workspace / ".scratch").resolve()
        self._active: dict[str, ExecutionContext] = {}

    async def acquire(self) -> ExecutionContext:
        context_id = f"ctx_{uuid.uuid4().hex[:12]}"
        self.workspace.mkdir(parents=True, exist_ok=True)
        scratch = self.scratch_root / context_id
        scratch.mkdir(parents=True, exist_ok=True)
        registry = make_tools(self.config, self.workspace, scratch=scratch)
        ctx = ExecutionContext(
            context_id=context_id,
            workspace=self.workspace,
            tools=registry.get_tools_for_groups(RUN_GROUPS),
            scratch=scratch,
        )
        self._active[context_id] = ctx
        logger.debug(f"Context acquired: {context_id}")
        return ctx

    async def release(self, ctx: ExecutionContext) -> None:
        ctx.abort()
        self._active.pop(ctx.context_id, None)
        if ctx.scratch is not None:
            shutil.rmtree(ctx.scratch, ignore_errors=True)
        logger.debug(f"Context released: {ctx.context_id}")

    @property
    def active_count(self) -> int:
        return len(self._active)
