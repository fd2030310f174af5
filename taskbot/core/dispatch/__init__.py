"""Dispatch — execute one job firing inside an isolated context."""

from taskbot.core.dispatch.context import ExecutionContext, WorkspaceContextProvider
from taskbot.core.dispatch.dispatcher import DispatchResult, Dispatcher

__all__ = ["DispatchResult", "Dispatcher", "ExecutionContext", "WorkspaceContextProvider"]
