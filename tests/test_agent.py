"""Tests for taskbot.agent (runner, routing, message conversion)."""

from unittest.mock import AsyncMock, patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langchain_core.tools import tool

from taskbot.agent.nodes import budget_exhausted, should_continue, to_litellm_message, tool_schemas
from taskbot.agent.runner import AgentRunner
from taskbot.agent.tracer import ExecutionTracer
from taskbot.core.config import Config
from taskbot.exceptions import AgentAbortedError, AgentError

ACHAT = "taskbot.core.providers.litellm.achat"


@pytest.fixture
def cfg():
    return Config(assistant={"system_prompt": "You are TestBot."})


@tool
def echo(text: str) -> str:
    """Echo the given text back."""
    return f"echo: {text}"


def _ai(content="", tool_calls=None, prompt_tokens=10, completion_tokens=5):
    return AIMessage(
        content=content,
        tool_calls=tool_calls or [],
        response_metadata={
            "finish_reason": "tool_calls" if tool_calls else "stop",
            "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
        },
    )


def _call(text="hi", call_id="c1"):
    return [{"id": call_id, "name": "echo", "args": {"text": text}}]


# --- Routing ---

def test_should_continue_respond():
    state = {"messages": [AIMessage(content="Hello")], "iteration": 1}
    assert should_continue(state) == "respond"


def test_should_continue_tools():
    state = {"messages": [_ai(tool_calls=_call())], "iteration": 1}
    assert should_continue(state) == "execute_tools"


def test_should_continue_max_iteration():
    state = {"messages": [_ai(tool_calls=_call())], "iteration": 5, "max_iterations": 5}
    assert should_continue(state) == "respond"


def test_budget_exhausted():
    assert budget_exhausted({"iteration": 4, "token_count": 0, "max_iterations": 5})
    assert budget_exhausted({"iteration": 0, "token_count": 900, "token_budget": 900})
    assert not budget_exhausted({"iteration": 0, "token_count": 10, "token_budget": 900})


def test_to_litellm_message():
    d = to_litellm_message(_ai("thinking", tool_calls=_call("x")))
    assert d["role"] == "assistant"
    assert d["tool_calls"][0]["function"] == {"name": "echo", "arguments": '{"text": "x"}'}
    assert to_litellm_message(ToolMessage(content="r", tool_call_id="c1")) == {
        "role": "tool", "tool_call_id": "c1", "content": "r",
    }
    assert to_litellm_message(HumanMessage(content="hi")) == {"role": "user", "content": "hi"}


def test_tool_schemas():
    assert tool_schemas([]) is None
    (spec,) = tool_schemas([echo])
    assert spec["type"] == "function"
    assert spec["function"]["name"] == "echo"
    assert "text" in spec["function"]["parameters"]["properties"]


# --- Runner ---

def test_extract_final_answer():
    state = {
        "messages": [
            HumanMessage(content="hi"),
            _ai("thinking", tool_calls=_call()),
            ToolMessage(content="result", tool_call_id="c1"),
            AIMessage(content="Final answer"),
        ]
    }
    assert AgentRunner._extract(state) == "Final answer"


@pytest.mark.asyncio
async def test_runner_tool_loop_is_traced(cfg):
    replies = [_ai("Let me echo that.", tool_calls=_call("hi")), _ai("Done: echo: hi")]
    tracer = ExecutionTracer()

    with patch(ACHAT, new_callable=AsyncMock, side_effect=replies) as achat:
        runner = AgentRunner(cfg, tools=[echo])
        response = await runner.run("Echo hi", events=tracer)

    assert response == "Done: echo: hi"
    assert achat.await_count == 2
    first_messages = achat.await_args_list[0].kwargs["messages"]
    assert first_messages[0] == {"role": "system", "content": "You are TestBot."}
    assert achat.await_args_list[0].kwargs["tools"][0]["function"]["name"] == "echo"

    assert tracer.tool_sequence == ["echo"]
    assert tracer.trace[0].tool_output == "echo: hi"
    assert tracer.trace[0].tool_input == {"text": "hi"}
    assert (tracer.input_tokens, tracer.output_tokens) == (20, 10)


@pytest.mark.asyncio
async def test_runner_hint_extends_prompt(cfg):
    with patch(ACHAT, new_callable=AsyncMock, return_value=_ai("ok")) as achat:
        await AgentRunner(cfg).run("do it", hint="Task: web search.")
    system = achat.await_args.kwargs["messages"][0]["content"]
    assert system == "You are TestBot.\n\nTask: web search."


@pytest.mark.asyncio
async def test_runner_unknown_tool_is_reported(cfg):
    replies = [
        _ai(tool_calls=[{"id": "c1", "name": "nope", "args": {}}]),
        _ai("Could not do it."),
    ]
    tracer = ExecutionTracer()
    with patch(ACHAT, new_callable=AsyncMock, side_effect=replies):
        response = await AgentRunner(cfg, tools=[echo]).run("x", events=tracer)
    assert response == "Could not do it."
    assert tracer.trace[0].tool_output == "Tool 'nope' not found"


@pytest.mark.asyncio
async def test_runner_forces_summary_at_iteration_limit(cfg):
    async def fake_achat(messages, model, tools=None, **kwargs):
        if tools is None:
            return _ai("Summary of what I found.")
        return _ai(tool_calls=_call())

    with patch(ACHAT, side_effect=fake_achat):
        response = await AgentRunner(cfg, tools=[echo]).run("loop", max_iterations=2)
    assert response == "Summary of what I found."


@pytest.mark.asyncio
async def test_runner_llm_error_raises(cfg):
    error = AIMessage(
        content="Error calling LLM: boom",
        response_metadata={"finish_reason": "error", "usage": {}},
    )
    with patch(ACHAT, new_callable=AsyncMock, return_value=error):
        with pytest.raises(AgentError, match="boom"):
            await AgentRunner(cfg).run("x")


@pytest.mark.asyncio
async def test_runner_empty_answer_raises(cfg):
    with patch(ACHAT, new_callable=AsyncMock, return_value=_ai("")):
        with pytest.raises(AgentError):
            await AgentRunner(cfg).run("x")


@pytest.mark.asyncio
async def test_runner_refuses_tools_after_abort(cfg):
    with patch(ACHAT, new_callable=AsyncMock, return_value=_ai(tool_calls=_call())):
        with pytest.raises(AgentAbortedError):
            await AgentRunner(cfg, tools=[echo]).run("x", is_aborted=lambda: True)
