"""Interpretation pipeline configuration (retrieval, admission, retries, personas)."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetrievalConfig(BaseModel):
    """Knowledge fragment retrieval controls.

    Scores are in [0, 1]. A theme below `acceptance_floor` is not queried at all;
    a fragment below `similarity_floor` is never returned.
    """

    model_config = ConfigDict(extra="ignore")

    acceptance_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    similarity_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    top_n: int = Field(default=10, ge=1)
    per_theme_cap: int = Field(default=4, ge=1)
    global_cap: int = Field(default=10, ge=1)
    timeout_sec: float = 10.0
    # Ask the similarity service for themes when the request carries none.
    detect_themes: bool = False


class PipelineConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Wall-clock ceiling for one interpretation run (retrieval + all stages).
    wall_clock_sec: float = 180.0

    # Admission control across concurrent runs.
    max_concurrent_runs: int = Field(default=10, ge=1)
    admission_mode: Literal["queue", "reject"] = "queue"
    admission_timeout_sec: float = 30.0
    # Hint returned to callers refused by admission control.
    retry_after_sec: float = 5.0

    # Stage retry backoff: base * 2^(attempt-1), capped, plus uniform jitter.
    backoff_base_sec: float = 0.5
    backoff_max_sec: float = 8.0
    backoff_jitter_sec: float = 0.25

    # Bounded index of result_id -> fragment ids kept for observability.
    fragments_index_size: int = 1024

    @model_validator(mode="after")
    def _check_backoff(self) -> "PipelineConfig":
        if self.backoff_max_sec < self.backoff_base_sec:
            raise ValueError("backoff_max_sec must be >= backoff_base_sec")
        return self


class PersonasConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Empty means every builtin persona is enabled.
    enabled: list[str] = Field(default_factory=list)
    # Extra persona definitions (TOML files or directories of them).
    paths: list[str] = Field(default_factory=list)


__all__ = ["RetrievalConfig", "PipelineConfig", "PersonasConfig"]
