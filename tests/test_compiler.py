"""Tests for the execution tracer and the executor compiler."""

import pytest

from taskbot.agent.tracer import AgentEvents, ExecutionTracer
from taskbot.core.pricing import PriceTable
from taskbot.agent.tools import RUN_GROUPS, make_tools
from taskbot.core.config import Config
from taskbot.executors.compiler import (
    EXTRACTION_TOOLS,
    FINAL_VAR,
    RESULT_BEARING_TOOLS,
    compile_executor,
    interpolate_references,
)
from taskbot.store.models import TRACE_OUTPUT_MAX, Job, LlmStep, ResultStep, ToolStep, TraceStep

CHEAP = "anthropic/claude-haiku-4-5-20251001"


def _job(trigger_type="scheduled", spec="0 9 * * *"):
    return Job(
        job_id="job_1",
        description="Summarize the front page of example.com",
        trigger_type=trigger_type,
        trigger_spec=spec,
        instructions="Fetch https://example.com and summarize it",
        created_at=0.0,
        updated_at=0.0,
    )


def _step(index, name, tool_input=None, output="", dependent=False):
    return TraceStep(
        index=index,
        tool_name=name,
        tool_input=tool_input or {},
        tool_output=output,
        was_llm_dependent=dependent,
    )


class Recorder(AgentEvents):
    def __init__(self):
        self.events = []

    def on_text(self, text):
        self.events.append(("text", text))

    def on_tool_end(self, tool_id, name, status, output="", duration_ms=0):
        self.events.append(("end", name, status))


# ── Tracer ─────────────────────────────────────────────────


def test_tracer_records_steps_and_dependency():
    inner = Recorder()
    tracer = ExecutionTracer(inner)

    tracer.on_text("I'll search first.")
    tracer.on_tool_start("t1", "web_search", {"query": "python news"})
    tracer.on_tool_end("t1", "web_search", "success", "result list", 12)
    tracer.on_text("The second result looks relevant.")
    tracer.on_tool_start("t2", "web_fetch", {"url": "https://python.org"})
    tracer.on_tool_end("t2", "web_fetch", "success", "x" * 500, 30)
    tracer.on_tool_start("t3", "write_file", {"path": "a.md", "content": "hi"})
    tracer.on_tool_end("t3", "write_file", "success", "Written 2 chars to a.md")
    tracer.on_usage(100, 20)
    tracer.on_usage(50, 10)

    trace = tracer.trace
    assert [s.tool_name for s in trace] == ["web_search", "web_fetch", "write_file"]
    # Text before the first tool never marks it
    assert [s.was_llm_dependent for s in trace] == [False, True, False]
    assert len(trace[1].tool_output) == TRACE_OUTPUT_MAX
    assert trace[0].duration_ms == 12
    assert tracer.tool_sequence == ["web_search", "web_fetch", "write_file"]
    assert tracer.tool_calls == 3
    assert (tracer.input_tokens, tracer.output_tokens, tracer.total_tokens) == (150, 30, 180)
    assert ("end", "web_fetch", "success") in inner.events


def test_tracer_ignores_non_final_status():
    tracer = ExecutionTracer()
    tracer.on_tool_start("t1", "exec_command", {"command": "ls"})
    tracer.on_tool_end("t1", "exec_command", "running")
    assert tracer.trace == []
    tracer.on_tool_end("t1", "exec_command", "error", "Error: exit code 1")
    assert len(tracer.trace) == 1


def test_tracer_whitespace_text_is_not_reasoning():
    tracer = ExecutionTracer()
    tracer.on_tool_start("t1", "list_dir", {"path": "."})
    tracer.on_tool_end("t1", "list_dir", "success", "[FILE] a.txt")
    tracer.on_text("  \n")
    tracer.on_tool_start("t2", "read_file", {"path": "a.txt"})
    tracer.on_tool_end("t2", "read_file", "success", "hello")
    assert not tracer.trace[1].was_llm_dependent


# ── Compiler ───────────────────────────────────────────────


@pytest.fixture
def prices():
    return PriceTable()


def test_compile_single_fetch(prices):
    trace = [_step(0, "web_fetch", {"url": "https://example.com"}, "Example Domain")]
    executor = compile_executor(_job(), trace, "run_1", prices, CHEAP)

    assert executor.owner_key == "job_1"
    assert executor.created_from_run_id == "run_1"
    tool, final, result = executor.steps
    assert isinstance(tool, ToolStep) and tool.store_as == "step_0_result"
    assert isinstance(final, LlmStep) and final.store_as == FINAL_VAR
    assert "{{step_0_result}}" in final.prompt_template
    assert isinstance(result, ResultStep) and result.template == "{{final_answer}}"

    assert executor.validation.expect_result
    assert executor.validation.required_variables == ["step_0_result"]
    assert executor.validation.abort_on_empty_extract
    assert executor.stats.total_steps == 3
    assert executor.stats.deterministic_steps == 1
    assert executor.stats.llm_steps == 1
    assert executor.stats.estimated_cost_per_run > 0


def test_compile_reasoning_step_becomes_llm_prompt(prices):
    trace = [
        _step(0, "web_search", {"query": "rust release"}, "1. Rust 1.90 released"),
        _step(1, "web_fetch", {"url": "https://blog.rust-lang.org"}, "blog", dependent=True),
    ]
    executor = compile_executor(_job(), trace, "run_1", prices, CHEAP)
    llm = executor.steps[1]
    assert isinstance(llm, LlmStep)
    assert llm.store_as == "step_1_result"
    assert "{{step_0_result}}" in llm.prompt_template
    assert "web_fetch" in llm.prompt_template
    assert executor.validation.required_variables == ["step_1_result"]


def test_compile_without_result_bearing_tools(prices):
    trace = [_step(0, "write_file", {"path": "out.md", "content": "hi"}, "Written 2 chars")]
    executor = compile_executor(_job(), trace, "run_1", prices, CHEAP)
    assert isinstance(executor.steps[-1], ResultStep)
    assert executor.steps[-1].template == "Completed 1 step(s): write_file"
    assert not executor.validation.expect_result
    assert executor.validation.required_variables == []
    assert not executor.validation.abort_on_empty_extract


@pytest.mark.parametrize(
    "job, trace",
    [
        (_job("condition", "disk_percent > 90"), [_step(0, "exec_command", {}, "ok")]),
        (_job("one_time", "1767225600"), [_step(0, "exec_command", {}, "ok")]),
        (_job(), []),
        (_job(), [_step(0, "web_fetch", {}, "a", True), _step(1, "web_fetch", {}, "b", True)]),
    ],
)
def test_compile_not_cacheable(prices, job, trace):
    assert compile_executor(job, trace, "run_1", prices, CHEAP) is None


def test_interpolate_most_recent_match_wins():
    trace = [
        _step(0, "exec_command", {}, "/tmp/out"),
        _step(1, "exec_command", {}, "/tmp/out"),
    ]
    stored = [(0, "step_0_result"), (1, "step_1_result")]
    result = interpolate_references(
        {"path": "/tmp/out", "args": ["/tmp/out", "x"], "n": 3}, stored, trace
    )
    assert result == {"path": "{{step_1_result}}", "args": ["{{step_1_result}}", "x"], "n": 3}


def test_interpolate_skips_truncated_outputs():
    long_output = "y" * TRACE_OUTPUT_MAX
    trace = [_step(0, "web_fetch", {}, long_output)]
    result = interpolate_references({"text": long_output}, [(0, "step_0_result")], trace)
    assert result == {"text": long_output}


def test_interpolate_exact_matches_only():
    trace = [_step(0, "web_search", {}, "hello")]
    result = interpolate_references({"q": "hello world"}, [(0, "step_0_result")], trace)
    assert result == {"q": "hello world"}


def test_result_bearing_tools_are_run_tools(tmp_path):
    registry = make_tools(Config(), tmp_path)
    run_tools = {t.name for t in registry.get_tools_for_groups(RUN_GROUPS)}
    assert RESULT_BEARING_TOOLS <= run_tools
    assert EXTRACTION_TOOLS <= RESULT_BEARING_TOOLS
