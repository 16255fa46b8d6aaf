"""Model and LLM configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ModelsConfig(BaseModel):
    # Accept both `default_llm` and canonical `default` from TOML/env.
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    default_llm: str = Field(default="openrouter/google/gemini-2.5-flash", alias="default")

    # Fallback LLM chain - used when default_llm fails (e.g., quota exceeded)
    # Set via SOMNI_FALLBACK_LLMS="openrouter/mistralai/mistral-nemo,openai/gpt-4o-mini"
    fallback_llms: list[str] = Field(
        default_factory=lambda: ["openrouter/mistralai/mistral-nemo"]
    )


class LLMConfig(BaseModel):
    """Provider-agnostic LLM request controls.

    Used for any stage that does not declare its own generation params.
    Model selection is controlled by `models.default_llm`.
    """

    model_config = ConfigDict(extra="ignore")

    temperature: float = 0.7
    max_output_tokens: int = 1500
    timeout_sec: float = 60.0
    max_retries: int = 2


__all__ = ["ModelsConfig", "LLMConfig"]
