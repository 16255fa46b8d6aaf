"""OpenAI LLM provider (OpenAI API) via `langchain-openai`'s `ChatOpenAI`."""

from __future__ import annotations

from langchain_openai import ChatOpenAI

from ..registry import model_registry
from ._openai_compat import OpenAICompatLLM


@model_registry.register_llm("openai", "*")
class OpenAILLM(OpenAICompatLLM):
    """OpenAI LLM provider.

    Args:
        config: somni configuration
        model_name: OpenAI model name (e.g., "gpt-4o", "gpt-4o-mini")
        **kwargs: Additional LangChain ChatOpenAI kwargs
    """

    provider = "openai"
    default_model = "gpt-4o-mini"

    def _build_chat_model(self, **kwargs: object) -> ChatOpenAI:
        # No SDK retries: stage retries and FallbackModel handle it
        return ChatOpenAI(
            model=self._model_name,
            api_key=(self._cfg.openai.api_key or None),
            organization=self._cfg.openai.organization,
            max_retries=0,
            **kwargs,
        )


__all__ = ["OpenAILLM"]
