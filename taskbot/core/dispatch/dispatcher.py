"""Dispatcher — runs one job firing through a cached executor or the full agent."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from loguru import logger

from taskbot.agent.runner import AgentRunner
from taskbot.agent.tracer import AgentEvents, ExecutionTracer
from taskbot.core.config.schema import Config
from taskbot.core.dispatch.context import ExecutionContext, WorkspaceContextProvider
from taskbot.core.pricing import PriceTable, estimate_executor_cost, estimate_full_agent_cost
from taskbot.core.providers import litellm as llm_provider
from taskbot.exceptions import ExecutorReplayError, RunTimeoutError, TaskbotError
from taskbot.executors import Classification, ExecutorReplayer, classify, compile_executor
from taskbot.store.executor_cache import ExecutorCache
from taskbot.store.job_store import JobStore
from taskbot.store.models import Executor, Job, Run, RunSource


class Agent(Protocol):
    async def run(self, instructions: str, events: AgentEvents | None = None, **kwargs) -> str: ...


AgentFactory = Callable[[Job, ExecutionContext], Agent]
CompleteFn = Callable[[str, int], Awaitable[tuple[str, dict[str, int]]]]


@dataclass
class DispatchResult:
    """Outcome of one dispatch.

    ``model`` is what the run's tokens are billed at; ``replay_cost`` is the
    cheap-model spend of a failed executor replay that preceded the agent.
    """

    run: Run
    success: bool
    source: RunSource
    model: str
    cost_saved: float = 0.0
    replay_cost: float = 0.0


class Dispatcher:
    """Execute a job firing and persist its Run.

    Path A replays the job's cached executor on the cheap model; any
    replay failure is recorded against the executor and falls through to
    Path B, the full agent under a wall-clock timeout. A successful agent
    run is compiled into a new executor version for next time.

    Parameters
    ----------
    config : Config
        Application config.
    store : JobStore
        Durable jobs and runs.
    cache : ExecutorCache
        Compiled executors.
    contexts : WorkspaceContextProvider
        Hands out one isolated execution context per attempt.
    prices : PriceTable
        Used for savings and executor cost estimates.
    agent_factory : callable, optional
        ``(job, context) -> agent``. Defaults to an AgentRunner bound to the
        context's tools.
    complete : callable, optional
        ``(prompt, max_tokens) -> (text, usage)`` for executor llm steps.
        Defaults to litellm on ``assistant.cheap_model``.
    events : AgentEvents, optional
        Extra sink for agent events (e.g. CLI progress).
    """

    def __init__(
        self,
        config: Config,
        store: JobStore,
        cache: ExecutorCache,
        contexts: WorkspaceContextProvider,
        prices: PriceTable,
        agent_factory: AgentFactory | None = None,
        complete: CompleteFn | None = None,
        events: AgentEvents | None = None,
    ):
        self.config = config
        self.store = store
        self.cache = cache
        self.contexts = contexts
        self.prices = prices
        self.agent_factory = agent_factory or self._default_agent
        self.complete = complete or self._cheap_complete
        self.events = events
        self.cheap_model = config.assistant.cheap_model
        self.timeout_s = config.scheduler.run_timeout_s

    # ── Defaults ───────────────────────────────────────────

    def _default_agent(self, job: Job, ctx: ExecutionContext) -> Agent:
        return AgentRunner(self.config, tools=ctx.tools, model=job.model)

    async def _cheap_complete(self, prompt: str, max_tokens: int) -> tuple[str, dict[str, int]]:
        return await llm_provider.acomplete(prompt, self.cheap_model, max_tokens=max_tokens)

    # ── Entry point ────────────────────────────────────────

    async def dispatch(
        self,
        job: Job,
        trigger_source: str = "scheduled",
        run_id: str | None = None,
    ) -> DispatchResult:
        """Run ``job`` once. ``run_id`` re-uses an existing (approved) Run.

        Once the Run is marked ``running`` it always reaches a terminal
        status here, whatever goes wrong.
        """
        run = self.store.get_run(run_id) if run_id else None
        if run is None:
            run = self.store.create_run(job.job_id, status="running", trigger_source=trigger_source)
        else:
            self.store.update_run(run.run_id, status="running")

        replay_cost = 0.0
        try:
            classification = classify(job.description)
            if self.config.executors.enabled:
                executor = self.cache.lookup(job.job_id)
                if executor is not None:
                    result, replay_cost = await self._run_executor(job, run, executor)
                    if result is not None:
                        return result
            result = await self._run_agent(job, run, classification)
        except Exception as e:
            logger.exception(f"Dispatch of {job.job_id} failed outside the agent")
            result = self._fail(
                job, run, f"{type(e).__name__}: {e}",
                model=job.model or self.config.assistant.model,
            )
        result.replay_cost = replay_cost
        return result

    # ── Path A: cached executor ────────────────────────────

    async def _run_executor(
        self, job: Job, run: Run, executor: Executor
    ) -> tuple[DispatchResult | None, float]:
        """Replay ``executor``. Returns (result or None to fall back, cheap-model spend)."""
        ctx = await self.contexts.acquire()
        replayer = ExecutorReplayer(ctx.tools, self.complete, ctx.is_aborted)
        try:
            replay = await asyncio.wait_for(replayer.run(executor), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            ctx.abort()
            logger.warning(f"Executor {executor.executor_id} timed out for {job.job_id}, falling back")
            replay = None
        except ExecutorReplayError as e:
            logger.warning(f"Executor {executor.executor_id} failed for {job.job_id}: {e}, falling back")
            replay = None
        except Exception as e:
            logger.error(f"Executor {executor.executor_id} crashed for {job.job_id}: {e}")
            replay = None
        finally:
            await self.contexts.release(ctx)

        if replay is None:
            self.cache.record_failure(executor.executor_id)
            spent = self.prices.cost(self.cheap_model, replayer.input_tokens, replayer.output_tokens)
            return None, spent

        now = time.time()
        saved = (
            estimate_full_agent_cost(job, self.prices, self.config.assistant.model)
            - estimate_executor_cost(executor, self.prices, self.cheap_model)
        )
        self.store.update_run(
            run.run_id,
            status="completed",
            source="executor",
            executor_version=executor.version,
            completed_at=now,
            duration_ms=replay.duration_ms,
            result_summary=replay.result,
            result_detail=replay.result,
            tool_calls=replay.tool_calls,
            input_tokens=replay.input_tokens,
            output_tokens=replay.output_tokens,
        )
        self.cache.record_success(executor.executor_id, saved, now)
        self.store.record_job_success(job.job_id, now)
        logger.info(
            f"Job {job.job_id} served by executor v{executor.version} "
            f"in {replay.duration_ms}ms (saved ~${saved:.4f})"
        )
        result = DispatchResult(
            run=self.store.get_run(run.run_id),
            success=True,
            source="executor",
            model=self.cheap_model,
            cost_saved=saved,
        )
        return result, 0.0

    # ── Path B: full agent ─────────────────────────────────

    async def _run_agent(self, job: Job, run: Run, classification: Classification) -> DispatchResult:
        model = job.model or self.config.assistant.model
        tracer = ExecutionTracer(self.events)
        started = time.monotonic()
        response: str | None = None
        error: str | None = None

        ctx: ExecutionContext | None = None
        try:
            ctx = await self.contexts.acquire()
            agent = self.agent_factory(job, ctx)
            response = await asyncio.wait_for(
                agent.run(
                    job.instructions,
                    events=tracer,
                    max_iterations=job.max_iterations,
                    token_budget=job.token_budget,
                    is_aborted=ctx.is_aborted,
                    hint=classification.hint,
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            if ctx is not None:
                ctx.abort()
            error = str(RunTimeoutError(self.timeout_s))
        except TaskbotError as e:
            error = str(e)
        except Exception as e:
            logger.exception(f"Agent crashed on job {job.job_id}")
            error = f"{type(e).__name__}: {e}"
        finally:
            if ctx is not None:
                await self.contexts.release(ctx)

        duration_ms = int((time.monotonic() - started) * 1000)
        if tracer.total_tokens > job.token_budget:
            logger.warning(
                f"Job {job.job_id} used {tracer.total_tokens} tokens (budget {job.token_budget})"
            )

        if error is not None:
            return self._fail(job, run, error, model=model, duration_ms=duration_ms, tracer=tracer)

        now = time.time()
        self.store.update_run(
            run.run_id,
            status="completed",
            source="full_agent",
            completed_at=now,
            duration_ms=duration_ms,
            result_summary=response,
            result_detail=response,
            tool_calls=tracer.tool_calls,
            input_tokens=tracer.input_tokens,
            output_tokens=tracer.output_tokens,
        )
        self.store.record_job_success(job.job_id, now)
        logger.info(f"Job {job.job_id} completed by agent in {duration_ms}ms")
        self._compile(job, run, tracer)
        return DispatchResult(
            run=self.store.get_run(run.run_id), success=True, source="full_agent", model=model
        )

    def _fail(
        self,
        job: Job,
        run: Run,
        error: str,
        model: str,
        duration_ms: int | None = None,
        tracer: ExecutionTracer | None = None,
    ) -> DispatchResult:
        """Mark ``run`` failed, count the failure and auto-pause at the ceiling."""
        now = time.time()
        usage = {}
        if tracer is not None:
            usage = dict(
                tool_calls=tracer.tool_calls,
                input_tokens=tracer.input_tokens,
                output_tokens=tracer.output_tokens,
            )
        self.store.update_run(
            run.run_id,
            status="failed",
            source="full_agent",
            completed_at=now,
            duration_ms=duration_ms,
            error=error,
            **usage,
        )
        failures = self.store.record_job_failure(job.job_id, error, now)
        logger.error(f"Job {job.job_id} failed ({failures}/{job.max_failures}): {error}")
        if failures >= job.max_failures:
            self.store.update_job(job.job_id, now=now, status="paused")
            logger.warning(f"Job {job.job_id} auto-paused after {failures} consecutive failures")
        return DispatchResult(
            run=self.store.get_run(run.run_id), success=False, source="full_agent", model=model
        )

    def _compile(self, job: Job, run: Run, tracer: ExecutionTracer) -> None:
        if not self.config.executors.enabled:
            return
        executor = compile_executor(job, tracer.trace, run.run_id, self.prices, self.cheap_model)
        if executor is not None:
            self.cache.save(executor)
