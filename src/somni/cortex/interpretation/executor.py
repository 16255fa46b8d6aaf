"""Sequential stage execution with retry, backoff and per-call timeouts.

Each stage runs through a small state machine::

    pending -> running -> succeeded
                       -> failed | timed_out -> (backoff) -> running ...
                                             -> failed (retries exhausted)

Stage i+1 is rendered only after stage i has been accepted, so its prompt can
use stage i's output. A required stage that ends `failed` raises
`PipelineFailed`; an optional one is recorded and skipped.

Sleep, clock and jitter source are injectable so retry timing is testable
without real delays.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from somni.core.exceptions import PipelineFailed, UpstreamGenerationError
from somni.core.types import StageResult, StageStatus
from somni.modules.models import BaseModel, ModelRequest, TextPart
from somni.modules.personas import StageDefinition

from .parser import ResponseParser
from .prompts import StagePrompt

logger = logging.getLogger(__name__)

Renderer = Callable[[StageDefinition, list[StageResult]], StagePrompt]
Sleep = Callable[[float], Awaitable[None]]


class StageState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class StageRun:
    """Book-keeping for one stage: current state, attempts and every transition."""

    stage: str
    state: StageState = StageState.PENDING
    attempts: int = 0
    transitions: list[StageState] = field(default_factory=lambda: [StageState.PENDING])
    last_exception: BaseException | None = None

    def move(self, state: StageState) -> None:
        self.state = state
        self.transitions.append(state)


@dataclass(frozen=True)
class BackoffPolicy:
    base_sec: float = 0.5
    max_sec: float = 8.0
    jitter_sec: float = 0.25

    def delay(self, attempt: int, rng: Callable[[], float]) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        exp = min(self.base_sec * (2 ** (attempt - 1)), self.max_sec)
        return exp + rng() * self.jitter_sec


class StageExecutor:
    def __init__(
        self,
        model: BaseModel,
        *,
        parser: ResponseParser | None = None,
        backoff: BackoffPolicy | None = None,
        lexicon: tuple[str, ...] = (),
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
        log_extra: str = "",
    ) -> None:
        self._model = model
        self._parser = parser or ResponseParser()
        self._backoff = backoff or BackoffPolicy()
        self._lexicon = lexicon
        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self._tag = log_extra
        self.runs: list[StageRun] = []

    async def run(
        self,
        stages: tuple[StageDefinition, ...] | list[StageDefinition],
        render: Renderer,
        *,
        results: list[StageResult] | None = None,
    ) -> list[StageResult]:
        """Run `stages` in order; `results` (if given) is appended to as stages finish."""
        out = results if results is not None else []
        for stage in stages:
            prompt = render(stage, list(out))
            result = await self.run_stage(stage, prompt)
            out.append(result)
            if result.status is StageStatus.FAILED:
                if stage.required:
                    raise PipelineFailed(
                        f"required stage '{stage.name}' failed after {result.attempts} attempt(s)",
                        stage=stage.name,
                        attempts=result.attempts,
                        cause=self.runs[-1].last_exception,
                        stage_results=list(out),
                    )
                logger.warning(
                    "%sOptional stage %s failed after %d attempt(s); continuing",
                    self._tag,
                    stage.name,
                    result.attempts,
                )
        return out

    def _request(self, stage: StageDefinition, prompt: StagePrompt) -> ModelRequest:
        gen = stage.generation
        return ModelRequest(
            parts=[TextPart(text=prompt.user)],
            system=prompt.system,
            temperature=gen.temperature,
            max_output_tokens=gen.max_tokens,
            timeout_sec=gen.timeout_sec,
            response_format="json_object" if stage.structured else "text",
        )

    async def run_stage(self, stage: StageDefinition, prompt: StagePrompt) -> StageResult:
        run = StageRun(stage=stage.name)
        self.runs.append(run)
        request = self._request(stage, prompt)
        max_attempts = stage.generation.max_attempts
        started = self._clock()
        text = ""

        for attempt in range(1, max_attempts + 1):
            run.attempts = attempt
            run.move(StageState.RUNNING)
            try:
                response = await asyncio.wait_for(
                    self._model.generate(request), timeout=stage.generation.timeout_sec
                )
                text = response.text or ""
                if not text.strip():
                    raise UpstreamGenerationError("empty response", stage=stage.name)
            except asyncio.TimeoutError as e:
                run.last_exception = e
                run.move(StageState.TIMED_OUT)
                error = UpstreamGenerationError(
                    f"stage '{stage.name}' timed out after {stage.generation.timeout_sec}s",
                    stage=stage.name,
                    attempts=attempt,
                    cause=e,
                )
            except Exception as e:
                run.last_exception = e
                run.move(StageState.FAILED)
                error = UpstreamGenerationError(
                    f"stage '{stage.name}' generation failed",
                    stage=stage.name,
                    attempts=attempt,
                    cause=e,
                )
            else:
                run.move(StageState.SUCCEEDED)
                break

            logger.warning(
                "%sStage %s attempt %d/%d %s (%s)",
                self._tag,
                stage.name,
                attempt,
                max_attempts,
                run.state.value,
                error.cause or error.message,
            )
            if attempt == max_attempts:
                if run.state is StageState.TIMED_OUT:
                    run.move(StageState.FAILED)
                return StageResult(
                    stage=stage.name,
                    status=StageStatus.FAILED,
                    latency_ms=(self._clock() - started) * 1000.0,
                    attempts=run.attempts,
                    error=error.to_info(),
                )
            await self._sleep(self._backoff.delay(attempt, self._rng))

        latency_ms = (self._clock() - started) * 1000.0

        outcome = self._parser.parse(text, stage, lexicon=self._lexicon)
        logger.info(
            "%sStage %s %s in %.0fms (%d attempt(s))",
            self._tag,
            stage.name,
            outcome.status.value,
            latency_ms,
            run.attempts,
        )
        return StageResult(
            stage=stage.name,
            status=outcome.status,
            raw_text=text,
            parsed=outcome.parsed,
            latency_ms=latency_ms,
            attempts=run.attempts,
            warnings=outcome.warnings,
            fallback_summary=outcome.fallback_summary,
        )


__all__ = ["StageExecutor", "StageRun", "StageState", "BackoffPolicy"]
