"""Executors — archetype classification, trace compilation and replay."""

from taskbot.executors.archetype import Classification, classify
from taskbot.executors.compiler import compile_executor
from taskbot.executors.replay import ExecutorReplayer, ReplayResult

__all__ = ["Classification", "ExecutorReplayer", "ReplayResult", "classify", "compile_executor"]
