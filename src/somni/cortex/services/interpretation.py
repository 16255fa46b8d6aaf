"""Interpretation service: the entry point for running a persona over a dream.

Usage:
    service = InterpretationService(config=cfg, similarity=StaticSimilarityService.from_file(p))
    result = await service.interpret_dream(context, "jung")

`interpret_dream` always returns an `InterpretationResult`. Request problems,
exhausted required stages, wall-clock breaches and admission refusals come back
as typed statuses (`invalid`, `failed`, `timed_out`, `rejected`) with an
`ErrorInfo`, never as exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from somni.core import Config, get_core_config
from somni.core.exceptions import (
    AdmissionRejected,
    PipelineFailed,
    PipelineTimeout,
    SomniError,
    ValidationError,
)
from somni.core.types import (
    DreamContext,
    InterpretationResult,
    PersonaMetadata,
    RunStatus,
    StageResult,
)
from somni.cortex.interpretation.executor import BackoffPolicy
from somni.cortex.interpretation.graph import build_interpretation_graph
from somni.cortex.interpretation.parser import ResponseParser
from somni.cortex.interpretation.state import InterpretationState, RunInputs
from somni.modules.models import BaseModel, ModelRegistry, model_registry
from somni.modules.persistence import InterpretationStore
from somni.modules.personas import Persona, PersonaRegistry
from somni.modules.retrieval import FragmentRetriever, SimilarityService

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str | None], BaseModel]
RunKey = tuple[str, str, int]


@dataclass
class _SharedRun:
    task: asyncio.Task[InterpretationResult]
    waiters: int = 0


class InterpretationService:
    """Orchestrates retrieval, prompting, stage execution and assembly.

    Args:
        config: Loaded configuration; defaults to the process config.
        similarity: Similarity service used for fragment retrieval.
        personas: Persona registry; defaults to builtins plus `personas.paths`.
        models: Model registry used to resolve `model_key`.
        model_factory: Overrides model resolution entirely (tests, custom wiring).
        store: Optional persistence; failures are logged and ignored.
        sleep, clock, rng: Injected into retry backoff for deterministic tests.
    """

    def __init__(
        self,
        *,
        similarity: SimilarityService,
        config: Config | None = None,
        personas: PersonaRegistry | None = None,
        models: ModelRegistry | None = None,
        model_factory: ModelFactory | None = None,
        store: InterpretationStore | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._cfg = config or get_core_config()
        self._personas = personas or PersonaRegistry.from_config(self._cfg.personas)
        self._models = models or model_registry
        self._model_factory = model_factory
        self._store = store
        self._clock = clock

        pipeline = self._cfg.pipeline
        self._graph = build_interpretation_graph(
            FragmentRetriever(similarity, self._cfg.retrieval),
            parser=ResponseParser(),
            backoff=BackoffPolicy(
                base_sec=pipeline.backoff_base_sec,
                max_sec=pipeline.backoff_max_sec,
                jitter_sec=pipeline.backoff_jitter_sec,
            ),
            sleep=sleep,
            clock=clock,
            rng=rng,
        )
        self._admission = asyncio.Semaphore(pipeline.max_concurrent_runs)
        self._inflight: dict[RunKey, _SharedRun] = {}
        self._fragments_index: OrderedDict[str, list[str]] = OrderedDict()

    # ---- Public API -----------------------------------------------------------

    def list_personas(self) -> list[PersonaMetadata]:
        return self._personas.metadata()

    def inspect_fragments_used(self, result_id: str) -> list[str]:
        """Fragment ids cited by a recent result; unknown or evicted ids give []."""
        return list(self._fragments_index.get(result_id, []))

    async def interpret_dream(
        self,
        context: DreamContext,
        persona_code: str,
        *,
        model_key: str | None = None,
        wall_clock_sec: float | None = None,
    ) -> InterpretationResult:
        """Run `persona_code` over `context`.

        Concurrent calls for the same (dream_id, persona, version) share one run.
        A cancelled caller only detaches from it; the run itself is cancelled
        once no caller is waiting on it.
        """
        key: RunKey = (context.dream_id, persona_code.strip().lower(), context.version)
        shared = self._inflight.get(key)
        if shared is None:
            task = asyncio.create_task(
                self._admit_and_run(context, persona_code, model_key, wall_clock_sec)
            )
            shared = _SharedRun(task=task)
            self._inflight[key] = shared
            task.add_done_callback(lambda _t, s=shared: self._forget(key, s))
        else:
            logger.info("Joining in-flight interpretation for %s", key)

        shared.waiters += 1
        try:
            return await asyncio.shield(shared.task)
        finally:
            shared.waiters -= 1
            if shared.waiters == 0 and not shared.task.done():
                logger.info("Last caller for %s went away; cancelling the run", key)
                shared.task.cancel()

    # ---- Internals ------------------------------------------------------------

    def _forget(self, key: RunKey, shared: _SharedRun) -> None:
        if self._inflight.get(key) is shared:
            del self._inflight[key]

    def _new_result(
        self,
        context: DreamContext,
        persona_code: str,
        status: RunStatus,
        *,
        error: SomniError | None = None,
        persona: Persona | None = None,
        stages: list[StageResult] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InterpretationResult:
        return InterpretationResult(
            result_id=uuid.uuid4().hex,
            dream_id=context.dream_id,
            persona=persona.code if persona else persona_code,
            persona_version=persona.version if persona else "",
            version=context.version,
            status=status,
            stages=list(stages or []),
            error=error.to_info() if error is not None else None,
            metadata=dict(metadata or {}),
        )

    async def _admit_and_run(
        self,
        context: DreamContext,
        persona_code: str,
        model_key: str | None,
        wall_clock_sec: float | None,
    ) -> InterpretationResult:
        pipeline = self._cfg.pipeline
        if pipeline.admission_mode == "reject" and self._admission.locked():
            return self._rejected(context, persona_code, "concurrency limit reached")
        try:
            await asyncio.wait_for(
                self._admission.acquire(), timeout=pipeline.admission_timeout_sec
            )
        except asyncio.TimeoutError:
            return self._rejected(
                context,
                persona_code,
                f"no slot freed within {pipeline.admission_timeout_sec}s",
            )
        try:
            return await self._run(context, persona_code, model_key, wall_clock_sec)
        finally:
            self._admission.release()

    def _rejected(
        self, context: DreamContext, persona_code: str, reason: str
    ) -> InterpretationResult:
        err = AdmissionRejected(reason, retry_after_sec=self._cfg.pipeline.retry_after_sec)
        logger.warning(
            "Rejected interpretation of %s by %s: %s", context.dream_id, persona_code, reason
        )
        return self._new_result(context, persona_code, RunStatus.REJECTED, error=err)

    def _resolve_model(self, model_key: str | None) -> tuple[BaseModel, str]:
        if model_key is not None and "/" not in model_key:
            raise ValidationError(f"model key must be 'provider/name', got '{model_key}'")
        if self._model_factory is not None:
            return self._model_factory(model_key), model_key or "custom"
        resolved = model_key or self._cfg.models.default_llm
        if not self._models.has_llm(resolved):
            raise ValidationError(f"unknown model provider in '{resolved}'")
        model = self._models.get_llm_with_fallback(model_key, config=self._cfg)
        return model, resolved

    async def _run(
        self,
        context: DreamContext,
        persona_code: str,
        model_key: str | None,
        wall_clock_sec: float | None,
    ) -> InterpretationResult:
        started = self._clock()
        ceiling = wall_clock_sec if wall_clock_sec is not None else self._cfg.pipeline.wall_clock_sec
        tag = f"[{context.dream_id}/{persona_code}]"

        try:
            persona = self._personas.get(persona_code)
            model, resolved_key = self._resolve_model(model_key)
        except ValidationError as e:
            logger.warning("%s Invalid request: %s", tag, e.message)
            return self._new_result(context, persona_code, RunStatus.INVALID, error=e)

        run = RunInputs(context=context, persona=persona, model=model, model_key=resolved_key)
        metadata: dict[str, Any] = {"model_key": resolved_key}
        logger.info("%s Interpretation started (model=%s)", tag, resolved_key)

        try:
            state: InterpretationState = await asyncio.wait_for(
                self._graph.ainvoke({"run": run, "warnings": [], "_steps": []}),
                timeout=ceiling,
            )
        except ValidationError as e:
            logger.warning("%s Invalid request: %s", tag, e.message)
            return self._new_result(
                context, persona_code, RunStatus.INVALID, error=e, persona=persona
            )
        except PipelineFailed as e:
            logger.error("%s Interpretation failed: %s", tag, e.message)
            metadata["elapsed_ms"] = self._elapsed_ms(started)
            return self._new_result(
                context,
                persona_code,
                RunStatus.FAILED,
                error=e,
                persona=persona,
                stages=e.stage_results,
                metadata=metadata,
            )
        except asyncio.TimeoutError as e:
            err = PipelineTimeout(
                f"interpretation exceeded {ceiling}s",
                stage=self._current_stage(persona, run.progress),
                cause=e,
            )
            logger.error("%s %s", tag, err.message)
            metadata["elapsed_ms"] = self._elapsed_ms(started)
            return self._new_result(
                context,
                persona_code,
                RunStatus.TIMED_OUT,
                error=err,
                persona=persona,
                stages=run.progress,
                metadata=metadata,
            )

        retrieval = state["retrieval"]
        stages = state.get("stage_results") or []
        metadata.update(
            {
                "elapsed_ms": self._elapsed_ms(started),
                "retrieval": retrieval.summary(),
                "stages": [
                    {
                        "stage": s.stage,
                        "status": s.status.value,
                        "attempts": s.attempts,
                        "latency_ms": round(s.latency_ms, 1),
                    }
                    for s in stages
                ],
                "steps": state.get("_steps", []),
            }
        )
        result = InterpretationResult(
            result_id=uuid.uuid4().hex,
            dream_id=context.dream_id,
            persona=persona.code,
            persona_version=persona.version,
            version=context.version,
            status=state["status"],
            stages=stages,
            payload=state.get("payload") or {},
            fragments_used=state.get("fragments_used") or [],
            warnings=list(dict.fromkeys(state.get("warnings") or [])),
            metadata=metadata,
        )
        self._remember_fragments(result)
        await self._persist(result, tag)

        logger.info(
            "%s Interpretation %s in %.0fms (%d fragments used)",
            tag,
            result.status.value,
            metadata["elapsed_ms"],
            len(result.fragments_used),
        )
        return result

    def _elapsed_ms(self, started: float) -> float:
        return round((self._clock() - started) * 1000.0, 1)

    @staticmethod
    def _current_stage(persona: Persona, done: list[StageResult]) -> str | None:
        if len(done) < len(persona.stages):
            return persona.stages[len(done)].name
        return None

    def _remember_fragments(self, result: InterpretationResult) -> None:
        self._fragments_index[result.result_id] = list(result.fragments_used)
        while len(self._fragments_index) > self._cfg.pipeline.fragments_index_size:
            self._fragments_index.popitem(last=False)

    async def _persist(self, result: InterpretationResult, tag: str) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(result)
        except Exception as e:
            logger.error("%s Failed to persist result %s: %s", tag, result.result_id, e)


__all__ = ["InterpretationService"]
