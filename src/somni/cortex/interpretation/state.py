"""State definition for the interpretation graph."""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from typing import Annotated, Any, TypedDict

from somni.core.types import DreamContext, RunStatus, StageResult
from somni.modules.models import BaseModel
from somni.modules.personas import Persona
from somni.modules.retrieval import RetrievalResult


@dataclass
class RunInputs:
    """Per-run collaborators and inputs. Read-only for the graph nodes, except
    `progress`, which the stage executor appends to as stages finish."""

    context: DreamContext
    persona: Persona
    model: BaseModel
    model_key: str
    progress: list[StageResult] = field(default_factory=list)


class InterpretationState(TypedDict, total=False):
    """State for the interpretation graph.

    Flow: validate -> retrieve -> run_stages -> assemble -> END
    """

    run: RunInputs

    # Pipeline data
    retrieval: RetrievalResult
    stage_results: list[StageResult]
    payload: dict[str, Any]
    fragments_used: list[str]
    status: RunStatus

    # Accumulated via operator.add reducers
    warnings: Annotated[list[str], operator.add]
    _steps: Annotated[list[dict[str, Any]], operator.add]


__all__ = ["InterpretationState", "RunInputs"]
