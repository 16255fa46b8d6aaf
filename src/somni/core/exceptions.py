"""Exception hierarchy for somni.

Every error carries a stable `code`, plus the stage it happened in, how many
attempts were spent and the class name of the underlying cause. `to_info()`
produces the caller-facing `ErrorInfo`; upstream response bodies never leave
the process through it.

Usage:
    from somni.core.exceptions import SomniError, PipelineFailed
"""

from __future__ import annotations

from somni.core.types import ErrorInfo


class SomniError(Exception):
    """Base exception for somni."""

    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        stage: str | None = None,
        attempts: int = 0,
        cause: BaseException | None = None,
        retry_after_sec: float | None = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.stage = stage
        self.attempts = attempts
        self.cause = type(cause).__name__ if cause is not None else None
        self.retry_after_sec = retry_after_sec

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(
            code=self.code,
            message=self.message,
            stage=self.stage,
            attempts=self.attempts,
            cause=self.cause,
            retry_after_sec=self.retry_after_sec,
        )


class ValidationError(SomniError):
    """Malformed request or persona configuration. Raised before any external call."""

    code = "VALIDATION_ERROR"


class PersonaNotFound(ValidationError):
    pass


class RetrievalDegraded(SomniError):
    """A theme query failed or timed out. Non-fatal."""

    code = "RETRIEVAL_DEGRADED"


class UpstreamGenerationError(SomniError):
    """The generation service failed for one attempt of one stage."""

    code = "UPSTREAM_GENERATION_ERROR"


class ParseDegraded(SomniError):
    """Stage output could not be parsed; the raw text was kept instead. Non-fatal."""

    code = "PARSE_DEGRADED"


class PipelineTimeout(SomniError):
    code = "PIPELINE_TIMEOUT"


class PipelineFailed(SomniError):
    """A required stage exhausted its retries."""

    code = "PIPELINE_FAILED"

    def __init__(self, message: str = "", *, stage_results: list | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.stage_results = list(stage_results or [])


class AdmissionRejected(SomniError):
    code = "ADMISSION_REJECTED"


__all__ = [
    "SomniError",
    "ValidationError",
    "PersonaNotFound",
    "RetrievalDegraded",
    "UpstreamGenerationError",
    "ParseDegraded",
    "PipelineTimeout",
    "PipelineFailed",
    "AdmissionRejected",
]
