"""Request/response types and errors for model providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from somni.core.exceptions import SomniError


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ModelRequest:
    """Provider-agnostic generation request.

    `response_format="json_object"` asks providers that support it for a JSON
    object; callers must still tolerate free text coming back.
    """

    parts: list[TextPart]
    system: str | None = None
    temperature: float = 0.7
    max_output_tokens: int = 1500
    timeout_sec: float = 60.0
    response_format: Literal["text", "json_object"] = "text"

    @property
    def text(self) -> str:
        return "\n\n".join(p.text for p in self.parts)


@dataclass(frozen=True)
class UsageStats:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class ProviderInfo:
    provider: str
    model_name: str
    model_key: str


@dataclass
class ModelResponse:
    text: str
    usage: UsageStats | None = None
    raw_provider: ProviderInfo | None = None
    extra: dict[str, object] = field(default_factory=dict)


# ---- Errors -----------------------------------------------------------------


class ModelError(SomniError):
    code = "MODEL_ERROR"

    def __init__(self, message: str = "", *, provider_info: ProviderInfo | None = None, **kw):
        super().__init__(message, **kw)
        self.provider_info = provider_info


class ModelTimeoutError(ModelError):
    code = "MODEL_TIMEOUT"


class ModelRateLimitError(ModelError):
    code = "MODEL_RATE_LIMITED"


class ModelQuotaExhaustedError(ModelError):
    code = "MODEL_QUOTA_EXHAUSTED"


class ModelExhaustedError(ModelError):
    """Every candidate in a fallback chain failed."""

    code = "MODEL_EXHAUSTED"


__all__ = [
    "TextPart",
    "ModelRequest",
    "UsageStats",
    "ProviderInfo",
    "ModelResponse",
    "ModelError",
    "ModelTimeoutError",
    "ModelRateLimitError",
    "ModelQuotaExhaustedError",
    "ModelExhaustedError",
]
