"""Executors: TreeHouse (deterministic scripts) and Nim (model-backed decisions)."""

from forest.execution.base import Executor, emit_outputs
from forest.execution.nim import NimExecutor, compile_prompt
from forest.execution.outcome import Failed, Outcome, Published, Rejected, Timeout
from forest.execution.treehouse import TreeHouseExecutor

__all__ = [
    "Executor",
    "Failed",
    "NimExecutor",
    "Outcome",
    "Published",
    "Rejected",
    "Timeout",
    "TreeHouseExecutor",
    "compile_prompt",
    "emit_outputs",
]
