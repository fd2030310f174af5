"""AgentState — LangGraph state definition."""

from __future__ import annotations

from langgraph.graph import MessagesState


class AgentState(MessagesState):
    """
    Extends MessagesState (messages: Annotated[list[BaseMessage], add_messages]).

    Budgets travel with the state so the routing edge can stop the loop.
    """

    system_prompt: str = ""
    iteration: int = 0
    token_count: int = 0
    max_iterations: int = 30
    token_budget: int = 50_000
