"""Shared data types for the interpretation pipeline.

Request-side types (`DreamContext`, `ThemeScore`) are frozen: a context is
built once per request and never mutated by the pipeline. Result-side types
are owned by one run and handed to the caller on completion.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ThemeScore(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    code: str
    score: float = Field(ge=0.0, le=1.0)
    name: str | None = None


class PriorDreamRef(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    dream_id: str
    summary: str | None = None
    occurred_at: datetime | None = None


class DreamContext(BaseModel):
    """Everything known about one dream at interpretation time."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    dream_id: str
    owner_id: str
    transcription: str
    themes: tuple[ThemeScore, ...] = ()
    user_profile: dict[str, Any] | None = None
    prior_dreams: tuple[PriorDreamRef, ...] = ()
    version: int = 1


ContentType = Literal["theory", "methodology", "example"]


class KnowledgeFragment(BaseModel):
    """A retrieved reference passage, scored against the dream."""

    model_config = ConfigDict(extra="ignore")

    id: str
    content: str
    themes: list[str] = Field(default_factory=list)
    content_type: ContentType = "theory"
    source: str | None = None
    similarity: float = 0.0
    theme_relevance: float = 0.0
    combined_score: float = 0.0

    @property
    def primary_theme(self) -> str | None:
        return self.themes[0] if self.themes else None


class StageStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARSE_DEGRADED = "parse_degraded"
    FAILED = "failed"


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    INVALID = "invalid"
    REJECTED = "rejected"


class ErrorInfo(BaseModel):
    """Caller-facing error summary. Never carries upstream response bodies."""

    code: str
    message: str
    stage: str | None = None
    attempts: int = 0
    cause: str | None = None
    retry_after_sec: float | None = None


class StageResult(BaseModel):
    stage: str
    status: StageStatus
    raw_text: str = ""
    parsed: Any = None
    latency_ms: float = 0.0
    attempts: int = 0
    warnings: list[str] = Field(default_factory=list)
    fallback_summary: str | None = None
    error: ErrorInfo | None = None

    @property
    def accepted(self) -> bool:
        """A stage is accepted when it produced output later stages may use."""
        return self.status is not StageStatus.FAILED


class InterpretationResult(BaseModel):
    result_id: str
    dream_id: str
    persona: str
    persona_version: str = ""
    version: int = 1
    status: RunStatus
    stages: list[StageResult] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    fragments_used: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error: ErrorInfo | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (RunStatus.SUCCEEDED, RunStatus.DEGRADED)


class PersonaMetadata(BaseModel):
    code: str
    version: str
    name: str
    description: str = ""
    approach: str = ""
    strengths: list[str] = Field(default_factory=list)
    stages: list[str] = Field(default_factory=list)


__all__ = [
    "ThemeScore",
    "PriorDreamRef",
    "DreamContext",
    "ContentType",
    "KnowledgeFragment",
    "StageStatus",
    "RunStatus",
    "ErrorInfo",
    "StageResult",
    "InterpretationResult",
    "PersonaMetadata",
]
