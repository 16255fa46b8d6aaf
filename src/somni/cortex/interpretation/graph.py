"""Builder for the interpretation graph.

Assembles nodes into the LangGraph pipeline:

    validate -> retrieve -> run_stages -> assemble -> END

`validate` raises `ValidationError` before any external call; `run_stages`
raises `PipelineFailed` when a required stage is exhausted. Both propagate
out of `ainvoke` to the service, which turns them into typed results.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

from langgraph.graph import END, StateGraph

from somni.core.types import RunStatus, StageResult, StageStatus
from somni.modules.personas import Persona
from somni.modules.retrieval import FragmentRetriever

from .executor import BackoffPolicy, StageExecutor
from .parser import ResponseParser, summarize
from .prompts import PromptBuilder
from .state import InterpretationState

logger = logging.getLogger(__name__)


def _step(name: str, started: float, **extra: Any) -> list[dict[str, Any]]:
    return [{"step": name, "ms": round((time.monotonic() - started) * 1000.0, 1), **extra}]


# ---- Assembly -----------------------------------------------------------------


def final_payload(persona: Persona, results: list[StageResult]) -> dict[str, Any]:
    """Payload of the last structured stage, or a fallback summary.

    Personas without a structured stage return the digest of their last
    accepted free-text stage.
    """
    final = persona.final_structured_stage
    if final is not None:
        for result in results:
            if result.stage != final.name:
                continue
            if result.status is StageStatus.SUCCEEDED and isinstance(result.parsed, dict):
                return dict(result.parsed)
            if result.status is StageStatus.PARSE_DEGRADED:
                return {"summary": result.fallback_summary or summarize(result.raw_text)}
        return {}
    for result in reversed(results):
        if result.accepted and isinstance(result.parsed, dict):
            return dict(result.parsed)
    return {}


def cited_fragments(
    payload: dict[str, Any],
    references_field: str,
    final_raw_text: str,
    retrieved_ids: list[str],
) -> list[str]:
    """Fragment ids the final output relied on, restricted to what was retrieved.

    Uses the persona's references field when the model filled it in (an empty
    list means "none"); otherwise scans the final raw text for retrieved ids.
    """
    known = set(retrieved_ids)
    refs = payload.get(references_field)
    if isinstance(refs, list):
        cited = [str(r).strip().strip("[]") for r in refs]
        return list(dict.fromkeys(r for r in cited if r in known))
    return [fid for fid in retrieved_ids if fid in final_raw_text]


def run_status(results: list[StageResult]) -> RunStatus:
    for result in results:
        if result.status is not StageStatus.SUCCEEDED:
            return RunStatus.DEGRADED
    return RunStatus.SUCCEEDED


# ---- Nodes --------------------------------------------------------------------


def make_validate_node() -> Callable[[InterpretationState], Awaitable[dict[str, Any]]]:
    async def validate(state: InterpretationState) -> dict[str, Any]:
        started = time.monotonic()
        run = state["run"]
        PromptBuilder(run.persona, run.context).validate()
        return {"_steps": _step("validate", started)}

    return validate


def make_retrieve_node(
    retriever: FragmentRetriever,
) -> Callable[[InterpretationState], Awaitable[dict[str, Any]]]:
    async def retrieve(state: InterpretationState) -> dict[str, Any]:
        started = time.monotonic()
        context = state["run"].context
        result = await retriever.retrieve(context.transcription, context.themes)
        return {
            "retrieval": result,
            "warnings": list(result.warnings),
            "_steps": _step("retrieve", started, fragments=len(result.fragments)),
        }

    return retrieve


def make_stages_node(
    *,
    parser: ResponseParser,
    backoff: BackoffPolicy,
    sleep: Callable[[float], Awaitable[None]],
    clock: Callable[[], float],
    rng: Callable[[], float],
) -> Callable[[InterpretationState], Awaitable[dict[str, Any]]]:
    async def run_stages(state: InterpretationState) -> dict[str, Any]:
        started = time.monotonic()
        run = state["run"]
        retrieval = state["retrieval"]
        builder = PromptBuilder(run.persona, run.context, retrieval.fragments)
        executor = StageExecutor(
            run.model,
            parser=parser,
            backoff=backoff,
            lexicon=run.persona.symbol_lexicon,
            sleep=sleep,
            clock=clock,
            rng=rng,
            log_extra=f"[{run.context.dream_id}/{run.persona.code}] ",
        )
        results = await executor.run(run.persona.stages, builder.render, results=run.progress)
        return {
            "stage_results": list(results),
            "_steps": _step("run_stages", started, stages=len(results)),
        }

    return run_stages


def make_assemble_node() -> Callable[[InterpretationState], Awaitable[dict[str, Any]]]:
    async def assemble(state: InterpretationState) -> dict[str, Any]:
        started = time.monotonic()
        run = state["run"]
        results = state.get("stage_results") or []
        retrieval = state["retrieval"]

        payload = final_payload(run.persona, results)
        final_raw = results[-1].raw_text if results else ""
        used = cited_fragments(
            payload, run.persona.references_field, final_raw, retrieval.fragment_ids
        )

        warnings: list[str] = []
        for result in results:
            warnings.extend(result.warnings)
            if result.status is StageStatus.FAILED:
                warnings.append(f"optional stage '{result.stage}' failed and was skipped")

        return {
            "payload": payload,
            "fragments_used": used,
            "status": run_status(results),
            "warnings": warnings,
            "_steps": _step("assemble", started),
        }

    return assemble


def build_interpretation_graph(
    retriever: FragmentRetriever,
    *,
    parser: ResponseParser | None = None,
    backoff: BackoffPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]],
    clock: Callable[[], float],
    rng: Callable[[], float],
) -> Any:
    """Build and compile the interpretation graph.

    Per-run inputs (context, persona, model) travel in `state["run"]`, so one
    compiled graph serves every run.
    """
    workflow = StateGraph(InterpretationState)

    workflow.add_node("validate", make_validate_node())
    workflow.add_node("retrieve", make_retrieve_node(retriever))
    workflow.add_node(
        "run_stages",
        make_stages_node(
            parser=parser or ResponseParser(),
            backoff=backoff or BackoffPolicy(),
            sleep=sleep,
            clock=clock,
            rng=rng,
        ),
    )
    workflow.add_node("assemble", make_assemble_node())

    workflow.set_entry_point("validate")
    workflow.add_edge("validate", "retrieve")
    workflow.add_edge("retrieve", "run_stages")
    workflow.add_edge("run_stages", "assemble")
    workflow.add_edge("assemble", END)

    return workflow.compile()


__all__ = [
    "build_interpretation_graph",
    "final_payload",
    "cited_fragments",
    "run_status",
]
