"""Graph helpers — routing edge, budget check and litellm message conversion."""

from __future__ import annotations

import json
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage
from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from loguru import logger

from taskbot.agent.state import AgentState

_ROLES = {"human": "user", "ai": "assistant", "system": "system", "tool": "tool"}


def should_continue(state: AgentState) -> str:
    """Route after reason: tool calls go to execute_tools, anything else ends the run."""
    last = state["messages"][-1]
    if state["iteration"] >= state.get("max_iterations", 30):
        logger.warning(f"Iteration limit {state['iteration']} reached, ending run")
        return "respond"
    if isinstance(last, AIMessage) and last.tool_calls:
        return "execute_tools"
    return "respond"


def budget_exhausted(state: AgentState) -> bool:
    """True once the next reason call must be the last one."""
    return (
        state["iteration"] + 1 >= state.get("max_iterations", 30)
        or state["token_count"] >= state.get("token_budget", 50_000)
    )


def to_litellm_message(msg: BaseMessage) -> dict[str, Any]:
    """One LangChain message as an OpenAI-style chat dict."""
    out: dict[str, Any] = {"role": _ROLES.get(msg.type, "user"), "content": msg.content}
    if isinstance(msg, ToolMessage):
        out["tool_call_id"] = msg.tool_call_id
    elif isinstance(msg, AIMessage) and msg.tool_calls:
        out["tool_calls"] = [
            {
                "id": call["id"],
                "type": "function",
                "function": {"name": call["name"], "arguments": json.dumps(call["args"])},
            }
            for call in msg.tool_calls
        ]
    return out


def tool_schemas(tools: list[BaseTool]) -> list[dict[str, Any]] | None:
    """OpenAI function specs for ``tools``; None when there are none."""
    return [convert_to_openai_tool(t) for t in tools] or None
