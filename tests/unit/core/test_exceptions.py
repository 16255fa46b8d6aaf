"""Contract tests for the somni exception hierarchy."""

from __future__ import annotations

from somni.core.exceptions import (
    AdmissionRejected,
    ParseDegraded,
    PersonaNotFound,
    PipelineFailed,
    PipelineTimeout,
    RetrievalDegraded,
    SomniError,
    UpstreamGenerationError,
    ValidationError,
)
from somni.modules.models.types import ModelError, ModelExhaustedError


def test_every_error_has_a_distinct_code() -> None:
    classes = [
        SomniError,
        ValidationError,
        RetrievalDegraded,
        UpstreamGenerationError,
        ParseDegraded,
        PipelineTimeout,
        PipelineFailed,
        AdmissionRejected,
        ModelError,
        ModelExhaustedError,
    ]
    codes = [cls.code for cls in classes]
    assert all(isinstance(c, str) and c.strip() for c in codes)
    assert len(set(codes)) == len(codes)


def test_persona_not_found_is_a_validation_error() -> None:
    assert issubclass(PersonaNotFound, ValidationError)
    assert PersonaNotFound.code == ValidationError.code


def test_to_info_keeps_only_the_cause_class_name() -> None:
    cause = RuntimeError("upstream said: secret body")
    err = UpstreamGenerationError("stage failed", stage="s1", attempts=3, cause=cause)
    info = err.to_info()
    assert info.code == "UPSTREAM_GENERATION_ERROR"
    assert info.stage == "s1"
    assert info.attempts == 3
    assert info.cause == "RuntimeError"
    assert "secret body" not in info.model_dump_json()


def test_pipeline_failed_carries_stage_results() -> None:
    err = PipelineFailed("boom", stage="x", stage_results=[1, 2])
    assert err.stage_results == [1, 2]
    assert err.stage == "x"
    assert str(err) == "boom"
