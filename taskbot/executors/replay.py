"""Executor replay — runs a compiled executor without the reasoning loop."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger

from taskbot.exceptions import ExecutorReplayError
from taskbot.executors.compiler import EXTRACTION_TOOLS
from taskbot.store.models import Executor, LlmStep, ResultStep, ToolStep

# (prompt, max_tokens) -> (text, usage dict)
CompleteFn = Callable[[str, int], Awaitable[tuple[str, dict[str, int]]]]

_VAR_RE = re.compile(r"\{\{(\w[\w.\[\]]*)\}\}")
_BRACKET_RE = re.compile(r"^(\w+)\[(\d+)\]$")
_TOOL_ERROR_PREFIXES = ("Error", "Tool error", "Command blocked")


@dataclass
class ReplayResult:
    result: str
    duration_ms: int
    tool_calls: int
    input_tokens: int
    output_tokens: int


class ExecutorReplayer:
    """Step through an executor, routing tool steps to LangChain tools and
    llm steps to a cheap completion function.

    Variables produced by ``store_as`` are interpolated into later tool
    inputs, prompts and the result template via ``{{name}}`` (dotted and
    ``name[0]`` paths allowed). Failures raise ExecutorReplayError.
    """

    def __init__(
        self,
        tools: list,
        complete: CompleteFn,
        is_aborted: Callable[[], bool] | None = None,
    ):
        self.tool_map = {t.name: t for t in tools}
        self.complete = complete
        self.is_aborted = is_aborted or (lambda: False)
        self.variables: dict[str, Any] = {}
        # cheap-model usage so far; still valid after a failed replay
        self.input_tokens = 0
        self.output_tokens = 0

    async def run(self, executor: Executor) -> ReplayResult:
        start = time.monotonic()
        total = len(executor.steps)
        validation = executor.validation
        tool_calls = 0
        final: str | None = None

        for i, step in enumerate(executor.steps):
            elapsed_ms = int((time.monotonic() - start) * 1000)
            if validation.max_duration_ms > 0 and elapsed_ms > validation.max_duration_ms:
                raise ExecutorReplayError(i, "timeout", f"exceeded {validation.max_duration_ms}ms")
            if self.is_aborted():
                raise ExecutorReplayError(i, "timeout", "execution context aborted")

            label = f"Step {i + 1}/{total}"
            if isinstance(step, ToolStep):
                output = await self._run_tool(i, step)
                tool_calls += 1
                if (
                    validation.abort_on_empty_extract
                    and step.tool_name in EXTRACTION_TOOLS
                    and not output.strip()
                ):
                    raise ExecutorReplayError(i, "empty_extract", step.tool_name)
                logger.debug(f"Executor {label}: {step.tool_name} ok ({len(output)} chars)")
                value: Any = output
            elif isinstance(step, LlmStep):
                prompt = self.interpolate(step.prompt_template)
                try:
                    value, usage = await self.complete(prompt, step.max_tokens or 500)
                except Exception as e:
                    raise ExecutorReplayError(i, "step_error", f"llm: {e}") from e
                self.input_tokens += usage.get("prompt_tokens", 0)
                self.output_tokens += usage.get("completion_tokens", 0)
                logger.debug(f"Executor {label}: llm ok ({len(value)} chars)")
            elif isinstance(step, ResultStep):
                final = self.interpolate(step.template)
                continue
            else:
                raise ExecutorReplayError(i, "step_error", f"unknown step type {step!r}")

            if step.store_as:
                self.variables[step.store_as] = value

        for name in validation.required_variables:
            if not str(self.variables.get(name) or "").strip():
                raise ExecutorReplayError(total, "missing_variable", name)

        if final is None:
            final = "Task completed"
        if validation.expect_result and (not final.strip() or "[missing:" in final):
            raise ExecutorReplayError(total, "missing_variable", "empty result")

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Executor {executor.executor_id} v{executor.version} replayed in {duration_ms}ms")
        return ReplayResult(
            result=final,
            duration_ms=duration_ms,
            tool_calls=tool_calls,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )

    async def _run_tool(self, index: int, step: ToolStep) -> str:
        tool = self.tool_map.get(step.tool_name)
        if tool is None:
            raise ExecutorReplayError(index, "step_error", f"tool '{step.tool_name}' not available")
        args = self.interpolate_value(step.tool_input)
        try:
            output = str(await tool.ainvoke(args))
        except Exception as e:
            raise ExecutorReplayError(index, "step_error", f"{step.tool_name}: {e}") from e
        if output.startswith(_TOOL_ERROR_PREFIXES):
            raise ExecutorReplayError(index, "step_error", output[:200])
        return output

    # ── Interpolation ──────────────────────────────────────

    def interpolate(self, template: str) -> str:
        def sub(m: re.Match) -> str:
            value = self.resolve(m.group(1))
            return value if value is not None else f"[missing: {m.group(1)}]"

        return _VAR_RE.sub(sub, template)

    def interpolate_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.interpolate(value)
        if isinstance(value, list):
            return [self.interpolate_value(v) for v in value]
        if isinstance(value, dict):
            return {k: self.interpolate_value(v) for k, v in value.items()}
        return value

    def resolve(self, key: str) -> str | None:
        parts = key.split(".")
        head = _BRACKET_RE.match(parts[0])
        if head:
            value: Any = _index(self.variables.get(head.group(1)), int(head.group(2)))
        else:
            value = self.variables.get(parts[0])
        for part in parts[1:]:
            if value is None:
                break
            m = _BRACKET_RE.match(part)
            if m:
                value = _index(_field(value, m.group(1)), int(m.group(2)))
            else:
                value = _field(value, part)
        return None if value is None else str(value)


def _field(value: Any, name: str) -> Any:
    if isinstance(value, dict):
        return value.get(name)
    return getattr(value, name, None)


def _index(value: Any, i: int) -> Any:
    if isinstance(value, (list, tuple)) and 0 <= i < len(value):
        return value[i]
    return None
