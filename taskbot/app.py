"""Application wiring — builds the object graph and owns the global accessor."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from taskbot.agent.runner import AgentRunner
from taskbot.agent.tools import make_tools
from taskbot.core.config import Config, load_config
from taskbot.core.dispatch import Dispatcher, WorkspaceContextProvider
from taskbot.core.dispatch.dispatcher import AgentFactory, CompleteFn
from taskbot.core.pricing import PriceTable
from taskbot.core.scheduler import JobScheduler, Notifier
from taskbot.store.executor_cache import ExecutorCache
from taskbot.store.job_store import JobStore

ASK_PROMPT = (
    "You are taskbot, an assistant that manages persistent automation jobs. "
    "Use the job tools to create, inspect, edit, pause, resume, delete or run "
    "jobs as the user asks. Write job instructions as complete, self-contained "
    "task descriptions the background agent can execute without asking questions. "
    "Reply briefly with what you did."
)


@dataclass
class TaskBot:
    """Every long-lived component, wired once per process."""

    config: Config
    store: JobStore
    cache: ExecutorCache
    prices: PriceTable
    contexts: WorkspaceContextProvider
    dispatcher: Dispatcher
    scheduler: JobScheduler

    async def serve(self) -> None:
        """Run the scheduler until cancelled."""
        await self.scheduler.start()
        logger.info(f"taskbot running: model={self.config.assistant.model}")
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await self.scheduler.stop()

    async def ask(self, message: str) -> str:
        """One conversational turn with job tools (plus web tools) available."""
        workspace = self.config.workspace_path
        workspace.mkdir(parents=True, exist_ok=True)
        registry = make_tools(self.config, workspace, store=self.store, scheduler=self.scheduler)
        runner = AgentRunner(
            self.config,
            tools=registry.get_tools_for_groups(["jobs", "web"]),
            prompt=ASK_PROMPT,
        )
        reply = await runner.run(message, max_iterations=10)
        await self.scheduler.drain()
        return reply


def build_app(
    config: Config | None = None,
    agent_factory: AgentFactory | None = None,
    complete: CompleteFn | None = None,
) -> TaskBot:
    """Wire Config -> JobStore -> ExecutorCache -> Dispatcher -> JobScheduler."""
    config = config or load_config()
    store = JobStore(
        str(config.db_path),
        max_iterations=config.assistant.max_iterations,
        token_budget=config.assistant.token_budget,
        max_failures=config.scheduler.default_max_failures,
    )
    cache = ExecutorCache(
        store,
        max_failures=config.executors.max_failures,
        stale_days=config.executors.stale_days,
    )
    prices = PriceTable(config.pricing)
    contexts = WorkspaceContextProvider(config)
    dispatcher = Dispatcher(
        config, store, cache, contexts, prices,
        agent_factory=agent_factory,
        complete=complete,
    )
    scheduler = JobScheduler(config, store, dispatcher, prices, notifier=Notifier(store))
    return TaskBot(
        config=config,
        store=store,
        cache=cache,
        prices=prices,
        contexts=contexts,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )


_app: TaskBot | None = None


def get_app() -> TaskBot:
    """Process-wide TaskBot, built from ``load_config()`` on first use."""
    global _app
    if _app is None:
        _app = build_app()
    return _app


def set_app(app: TaskBot | None) -> None:
    global _app
    _app = app
