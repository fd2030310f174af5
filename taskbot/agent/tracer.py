"""Agent event channel and the execution tracer that records tool steps."""

from __future__ import annotations

from typing import Any

from taskbot.store.models import TRACE_OUTPUT_MAX, TraceStep

FINAL_TOOL_STATUSES = ("success", "error")


class AgentEvents:
    """Events an AgentRunner emits while it works. Default: ignore everything."""

    def on_text(self, text: str) -> None:
        pass

    def on_tool_start(self, tool_id: str, name: str, tool_input: dict[str, Any]) -> None:
        pass

    def on_tool_end(
        self,
        tool_id: str,
        name: str,
        status: str,
        output: str = "",
        duration_ms: int = 0,
    ) -> None:
        pass

    def on_usage(self, input_tokens: int, output_tokens: int) -> None:
        pass


class ExecutionTracer(AgentEvents):
    """Forward every event to ``inner`` while capturing an execution trace.

    A step is marked ``was_llm_dependent`` when the agent emitted
    non-whitespace text between the previous tool completing and this tool
    starting; that text is the agent reasoning about a prior result. The
    first tool of a run is never marked, since nothing preceded it.
    """

    def __init__(self, inner: AgentEvents | None = None):
        self.inner = inner or AgentEvents()
        self._steps: list[TraceStep] = []
        self._pending: dict[str, dict[str, Any]] = {}
        self._text_since_tool = ""
        self._seen_tool_complete = False
        self.tool_calls = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.final_text = ""

    def on_text(self, text: str) -> None:
        self.inner.on_text(text)
        self._text_since_tool += text
        if text.strip():
            self.final_text = text

    def on_tool_start(self, tool_id: str, name: str, tool_input: dict[str, Any]) -> None:
        self.inner.on_tool_start(tool_id, name, tool_input)
        self.tool_calls += 1
        self._pending[tool_id] = {
            "tool_name": name,
            "tool_input": dict(tool_input),
            "was_llm_dependent": self._seen_tool_complete and bool(self._text_since_tool.strip()),
        }

    def on_tool_end(
        self,
        tool_id: str,
        name: str,
        status: str,
        output: str = "",
        duration_ms: int = 0,
    ) -> None:
        self.inner.on_tool_end(tool_id, name, status, output, duration_ms)
        if status not in FINAL_TOOL_STATUSES:
            return
        pending = self._pending.pop(tool_id, None)
        if pending is not None:
            self._steps.append(TraceStep(
                index=len(self._steps),
                tool_name=pending["tool_name"] or name,
                tool_input=pending["tool_input"],
                tool_output=(output or "")[:TRACE_OUTPUT_MAX],
                duration_ms=duration_ms,
                was_llm_dependent=pending["was_llm_dependent"],
            ))
        self._text_since_tool = ""
        self._seen_tool_complete = True

    def on_usage(self, input_tokens: int, output_tokens: int) -> None:
        self.inner.on_usage(input_tokens, output_tokens)
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens

    @property
    def trace(self) -> list[TraceStep]:
        return list(self._steps)

    @property
    def tool_sequence(self) -> list[str]:
        return [s.tool_name for s in self._steps]

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens
