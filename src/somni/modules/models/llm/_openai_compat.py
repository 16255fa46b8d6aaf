"""Shared adapter for OpenAI-compatible chat APIs (OpenAI, OpenRouter).

Thin layer from the `BaseModel` contract to `langchain-openai`'s `ChatOpenAI`.
SDK retries are disabled: retry policy belongs to the stage executor and
provider fallback to `FallbackModel`.
"""

from __future__ import annotations

import logging

import openai
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from somni.core import Config

from ..base import BaseModel
from ..types import (
    ModelError,
    ModelQuotaExhaustedError,
    ModelRateLimitError,
    ModelRequest,
    ModelResponse,
    ModelTimeoutError,
    ProviderInfo,
    UsageStats,
)

logger = logging.getLogger(__name__)


def build_openai_messages(request: ModelRequest) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    if request.system:
        messages.append(SystemMessage(content=request.system))
    messages.append(HumanMessage(content=request.text))
    return messages


def map_openai_error(exc: Exception, provider_info: ProviderInfo) -> ModelError:
    """Translate an SDK exception into the model error hierarchy.

    The message keeps only the provider/model and exception class, not the
    upstream body.
    """
    label = f"{provider_info.model_key} ({type(exc).__name__})"
    if isinstance(exc, openai.APITimeoutError):
        return ModelTimeoutError(f"{label} timed out", provider_info=provider_info, cause=exc)
    error_str = str(exc).lower()
    if "insufficient_quota" in error_str or "billing" in error_str:
        return ModelQuotaExhaustedError(
            f"{label} quota exhausted", provider_info=provider_info, cause=exc
        )
    if isinstance(exc, openai.RateLimitError) or "rate_limit" in error_str:
        return ModelRateLimitError(f"{label} rate limited", provider_info=provider_info, cause=exc)
    return ModelError(f"{label} request failed", provider_info=provider_info, cause=exc)


def extract_usage(msg: object) -> UsageStats | None:
    """Extract usage stats from LangChain message metadata."""
    meta = getattr(msg, "response_metadata", None) or {}
    if isinstance(meta, dict):
        u = meta.get("token_usage")
        if isinstance(u, dict) and u.get("prompt_tokens") is not None:
            return UsageStats(
                input_tokens=int(u.get("prompt_tokens") or 0),
                output_tokens=int(u.get("completion_tokens") or 0),
                total_tokens=int(u.get("total_tokens") or 0),
            )

    um = getattr(msg, "usage_metadata", None)
    if isinstance(um, dict) and um.get("input_tokens") is not None:
        return UsageStats(
            input_tokens=int(um.get("input_tokens") or 0),
            output_tokens=int(um.get("output_tokens") or 0),
            total_tokens=int(um.get("total_tokens") or 0),
        )
    return None


def message_text(msg: object) -> str:
    text = getattr(msg, "content", "")
    if isinstance(text, list):
        parts = []
        for block in text:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
            elif isinstance(block, str):
                parts.append(block)
        text = "".join(parts)
    return str(text or "")


class OpenAICompatLLM(BaseModel):
    """Base for providers that speak the OpenAI chat completions protocol."""

    provider = "openai"
    default_model = "gpt-4o-mini"

    def __init__(self, config: Config, *, model_name: str | None = None, **kwargs: object) -> None:
        self._cfg = config
        self._model_name = (model_name or self.default_model).strip() or self.default_model
        self._langchain_model = self._build_chat_model(**kwargs)

    def _build_chat_model(self, **kwargs: object):
        raise NotImplementedError

    @property
    def provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            provider=self.provider,
            model_name=self._model_name,
            model_key=f"{self.provider}/{self._model_name}",
        )

    async def generate(self, request: ModelRequest) -> ModelResponse:
        messages = build_openai_messages(request)

        bind_kwargs: dict = {
            "timeout": request.timeout_sec,
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }
        if request.response_format == "json_object":
            bind_kwargs["response_format"] = {"type": "json_object"}

        model = self._langchain_model.bind(**bind_kwargs)
        provider_info = self.provider_info

        try:
            msg = await model.ainvoke(messages)
        except openai.OpenAIError as e:
            raise map_openai_error(e, provider_info) from e

        text = message_text(msg)
        if not text:
            logger.warning("%s returned empty content", provider_info.model_key)

        return ModelResponse(
            text=text,
            usage=extract_usage(msg),
            raw_provider=provider_info,
        )


__all__ = [
    "OpenAICompatLLM",
    "build_openai_messages",
    "map_openai_error",
    "extract_usage",
    "message_text",
]
