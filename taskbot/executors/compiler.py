"""Executor compiler — turns a successful agent trace into a replayable script.

Mechanical steps are replayed verbatim as tool calls; steps where the
agent reasoned about an earlier result become cheap-model prompts that
see every earlier stored variable. A final cheap-model step condenses the
last stored result into the answer.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

from loguru import logger

from taskbot.core.pricing import PriceTable, estimate_steps_cost
from taskbot.store.models import (
    TRACE_OUTPUT_MAX,
    Executor,
    ExecutorStats,
    ExecutorValidation,
    Job,
    LlmStep,
    ResultStep,
    ToolStep,
    TraceStep,
)

# Tools whose output is worth storing for later steps
RESULT_BEARING_TOOLS = {
    "web_fetch",
    "web_search",
    "read_file",
    "list_dir",
    "exec_command",
}

# Tools whose empty output means the page changed and replay must abort
EXTRACTION_TOOLS = {"web_fetch"}

LLM_STEP_MAX_TOKENS = 1000
FINAL_STEP_MAX_TOKENS = 500
FINAL_VAR = "final_answer"
MAX_DURATION_MS = 5 * 60 * 1000


def compile_executor(
    job: Job,
    trace: list[TraceStep],
    run_id: str,
    prices: PriceTable,
    cheap_model: str,
) -> Executor | None:
    """Compile ``trace`` into an Executor owned by ``job``; None when not cacheable."""
    if job.trigger_type == "condition":
        logger.info(f"Executor skipped for {job.job_id}: condition-triggered")
        return None
    if job.trigger_type == "one_time":
        logger.info(f"Executor skipped for {job.job_id}: one-time")
        return None
    if not trace:
        logger.info(f"Executor skipped for {job.job_id}: empty trace")
        return None
    if all(s.was_llm_dependent for s in trace):
        logger.info(f"Executor skipped for {job.job_id}: all {len(trace)} steps need reasoning")
        return None

    steps: list[ToolStep | LlmStep | ResultStep] = []
    stored: list[tuple[int, str]] = []  # (trace index, variable) in trace order
    deterministic = 0
    llm = 0

    for step in trace:
        var = f"step_{step.index}_result"
        if step.was_llm_dependent:
            steps.append(LlmStep(
                prompt_template=_llm_prompt(step, stored),
                store_as=var,
                max_tokens=LLM_STEP_MAX_TOKENS,
            ))
            stored.append((step.index, var))
            llm += 1
        else:
            store_as = var if step.tool_name in RESULT_BEARING_TOOLS else None
            steps.append(ToolStep(
                tool_name=step.tool_name,
                tool_input=interpolate_references(step.tool_input, stored, trace),
                store_as=store_as,
            ))
            if store_as:
                stored.append((step.index, store_as))
            deterministic += 1

    last_var = stored[-1][1] if stored else None
    if last_var:
        steps.append(LlmStep(
            prompt_template=(
                f"Task: {job.description}\n\nData collected:\n{{{{{last_var}}}}}\n\n"
                "Based on the data above, provide a concise answer to the task. "
                "Be direct and brief."
            ),
            store_as=FINAL_VAR,
            max_tokens=FINAL_STEP_MAX_TOKENS,
        ))
        llm += 1
        steps.append(ResultStep(template=f"{{{{{FINAL_VAR}}}}}"))
    else:
        names = ", ".join(s.tool_name for s in trace)
        steps.append(ResultStep(template=f"Completed {len(trace)} step(s): {names}"))

    cost = estimate_steps_cost(steps, prices, cheap_model)
    executor = Executor(
        executor_id=f"exe_{uuid.uuid4().hex[:12]}",
        owner_key=job.job_id,
        steps=steps,
        validation=ExecutorValidation(
            expect_result=last_var is not None,
            max_duration_ms=MAX_DURATION_MS,
            required_variables=[last_var] if last_var else [],
            abort_on_empty_extract=any(s.tool_name in EXTRACTION_TOOLS for s in trace),
        ),
        stats=ExecutorStats(
            total_steps=len(steps),
            deterministic_steps=deterministic,
            llm_steps=llm,
            estimated_cost_per_run=cost,
        ),
        created_at=0.0,
        created_from_run_id=run_id,
    )
    logger.info(
        f"Executor compiled for {job.job_id}: {deterministic} deterministic, "
        f"{llm} llm, est. ${cost:.4f}/run"
    )
    return executor


def _llm_prompt(step: TraceStep, stored: list[tuple[int, str]]) -> str:
    refs = [
        f"Previous step result ({var}): {{{{{var}}}}}"
        for idx, var in stored
        if idx < step.index
    ]
    context = "\n".join(refs) + "\n\n" if refs else ""
    lines = [f"{context}Given the above context, determine the appropriate action."]
    if step.tool_name:
        lines.append(f"The next action should use {step.tool_name} with appropriate parameters.")
    if step.tool_input:
        lines.append(f"Parameters to decide: {json.dumps(step.tool_input)}")
    lines.append("Provide just the result or the parameter values needed.")
    return "\n".join(lines).strip()


def interpolate_references(
    tool_input: dict[str, Any],
    stored: list[tuple[int, str]],
    trace: list[TraceStep],
) -> dict[str, Any]:
    """Rewrite input values equal to an earlier stored output into ``{{var}}``.

    Only exact full-value matches count; the most recent matching step
    wins. Outputs cut at the trace truncation length are skipped, since an
    equal value there is likely a coincidental prefix.
    """
    by_index = {s.index: s for s in trace}
    candidates: list[tuple[int, str, str]] = []
    for idx, var in stored:
        source = by_index.get(idx)
        if source is None:
            continue
        output = source.tool_output
        if not output or len(output) == TRACE_OUTPUT_MAX:
            continue
        candidates.append((idx, var, output))

    if not candidates:
        return dict(tool_input)

    def replace(value: Any) -> Any:
        if isinstance(value, str) and value:
            best: tuple[int, str] | None = None
            for idx, var, output in candidates:
                if value == output and (best is None or idx > best[0]):
                    best = (idx, var)
            return f"{{{{{best[1]}}}}}" if best else value
        if isinstance(value, list):
            return [replace(v) for v in value]
        if isinstance(value, dict):
            return {k: replace(v) for k, v in value.items()}
        return value

    return {k: replace(v) for k, v in tool_input.items()}
