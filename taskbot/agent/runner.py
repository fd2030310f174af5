"""AgentRunner — isolated tool-using agent that carries out one job run."""

from __future__ import annotations

import time
from typing import Any, Callable

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langgraph.graph import END, START, StateGraph
from loguru import logger

from taskbot.agent.nodes import (
    budget_exhausted,
    should_continue,
    to_litellm_message,
    tool_schemas,
)
from taskbot.agent.state import AgentState
from taskbot.agent.tracer import AgentEvents
from taskbot.core.config.schema import Config
from taskbot.core.providers import litellm as llm_provider
from taskbot.exceptions import AgentAbortedError, AgentError

DEFAULT_PROMPT = (
    "You are an autonomous automation agent running a scheduled job without a "
    "human in the loop. Use the available tools to complete the task, then reply "
    "with a short, factual summary of the outcome. Do not ask questions."
)


class AgentRunner:
    """Reason → execute_tools → respond loop over litellm.

    Every model turn and tool call is reported to an AgentEvents sink, so
    an ExecutionTracer can observe the run. The loop stops at
    ``max_iterations`` or once ``token_budget`` is used up, and refuses any
    further tool call after the execution context is aborted.

    Parameters
    ----------
    config : Config
        Application config.
    tools : list
        LangChain tools bound to this run's execution context.
    model : str, optional
        Model override. Defaults to config.assistant.model.
    prompt : str, optional
        System prompt. Defaults to ``config.assistant.system_prompt``.
    """

    def __init__(
        self,
        config: Config,
        tools: list | None = None,
        model: str | None = None,
        prompt: str | None = None,
    ):
        self.config = config
        self.tools = tools or []
        self.model = model or config.assistant.model
        self.prompt = prompt or config.assistant.system_prompt or DEFAULT_PROMPT
        llm_provider.setup_provider(config)

    async def run(
        self,
        instructions: str,
        events: AgentEvents | None = None,
        max_iterations: int = 30,
        token_budget: int = 50_000,
        is_aborted: Callable[[], bool] | None = None,
        hint: str = "",
    ) -> str:
        """Run the task and return the final assistant text.

        Raises AgentError when the model call fails or no answer is
        produced, and AgentAbortedError when a tool call is attempted
        after abort.
        """
        events = events or AgentEvents()
        graph = self._compile(events, is_aborted or (lambda: False))
        prompt = f"{self.prompt}\n\n{hint}" if hint else self.prompt
        state = await graph.ainvoke(
            {
                "messages": [HumanMessage(content=instructions)],
                "system_prompt": prompt,
                "iteration": 0,
                "token_count": 0,
                "max_iterations": max_iterations,
                "token_budget": token_budget,
            },
            config={"recursion_limit": max_iterations * 2 + 5},
        )
        response = self._extract(state)
        logger.debug(
            f"AgentRunner done: {len(response)} chars, {state.get('token_count', 0)} tokens, "
            f"{state.get('iteration', 0)} iterations"
        )
        if not response:
            raise AgentError("Agent produced no final answer")
        return response

    def _compile(self, events: AgentEvents, is_aborted: Callable[[], bool]):
        """Build graph: reason -> execute_tools -> respond."""
        tool_defs = tool_schemas(self.tools)
        tool_map = {t.name: t for t in self.tools}
        model = self.model
        config = self.config

        async def reason(state: AgentState) -> dict[str, Any]:
            messages = [{"role": "system", "content": state["system_prompt"]}]
            messages.extend(to_litellm_message(m) for m in state["messages"])

            use_tools = tool_defs
            if budget_exhausted(state):
                use_tools = None
                messages.append({
                    "role": "user",
                    "content": "Summarize your findings now. Do not make any more tool calls.",
                })

            ai_message = await llm_provider.achat(
                messages=messages,
                model=model,
                tools=use_tools,
                temperature=config.assistant.temperature,
                api_base=config.get_api_base(model),
            )
            if llm_provider.is_error(ai_message):
                raise AgentError(ai_message.content)

            usage = ai_message.response_metadata.get("usage", {})
            prompt_tokens = usage.get("prompt_tokens", 0)
            completion_tokens = usage.get("completion_tokens", 0)
            events.on_usage(prompt_tokens, completion_tokens)
            if ai_message.content:
                events.on_text(ai_message.content)

            return {
                "messages": [ai_message],
                "iteration": state["iteration"] + 1,
                "token_count": state["token_count"] + prompt_tokens + completion_tokens,
            }

        async def execute_tools(state: AgentState) -> dict[str, Any]:
            last_msg = state["messages"][-1]
            results = []
            for call in last_msg.tool_calls:
                if is_aborted():
                    raise AgentAbortedError(f"Aborted before tool call '{call['name']}'")

                events.on_tool_start(call["id"], call["name"], call["args"])
                started = time.monotonic()
                tool = tool_map.get(call["name"])
                if tool is None:
                    result, status = f"Tool '{call['name']}' not found", "error"
                    logger.warning(f"Tool not found: {call['name']}")
                else:
                    try:
                        logger.debug(f"Executing tool: {call['name']}({call['args']})")
                        result, status = str(await tool.ainvoke(call["args"])), "success"
                    except Exception as e:
                        result, status = f"Tool error: {e}", "error"
                        logger.error(f"Tool error: {call['name']} → {e}")

                duration_ms = int((time.monotonic() - started) * 1000)
                events.on_tool_end(call["id"], call["name"], status, result, duration_ms)
                results.append(ToolMessage(content=result, tool_call_id=call["id"]))
            return {"messages": results}

        async def respond(state: AgentState) -> dict[str, Any]:
            if state["token_count"] > state.get("token_budget", 50_000):
                logger.warning(
                    f"Token budget exceeded: {state['token_count']} > {state['token_budget']}"
                )
            return {}

        graph = StateGraph(AgentState)
        graph.add_node("reason", reason)
        graph.add_node("execute_tools", execute_tools)
        graph.add_node("respond", respond)

        graph.add_edge(START, "reason")
        graph.add_conditional_edges("reason", should_continue)
        graph.add_edge("execute_tools", "reason")
        graph.add_edge("respond", END)
        return graph.compile()

    @staticmethod
    def _extract(state: dict) -> str:
        """Get final assistant text from state."""
        for msg in reversed(state["messages"]):
            if isinstance(msg, AIMessage) and msg.content and not msg.tool_calls:
                return msg.content
        return ""
