"""Interpretation pipeline: prompts, stage execution, parsing and the graph."""

from __future__ import annotations

from .executor import BackoffPolicy, StageExecutor, StageRun, StageState
from .graph import build_interpretation_graph
from .parser import ParseOutcome, ResponseParser
from .prompts import PromptBuilder, StagePrompt

__all__ = [
    "BackoffPolicy",
    "StageExecutor",
    "StageRun",
    "StageState",
    "build_interpretation_graph",
    "ParseOutcome",
    "ResponseParser",
    "PromptBuilder",
    "StagePrompt",
]
