"""OpenRouter LLM provider.

OpenRouter exposes an OpenAI-compatible endpoint, so this reuses `ChatOpenAI`
pointed at `openrouter.base_url`. Model names keep their vendor prefix:
`openrouter/google/gemini-2.5-flash` -> model `google/gemini-2.5-flash`.
"""

from __future__ import annotations

from langchain_openai import ChatOpenAI

from ..registry import model_registry
from ._openai_compat import OpenAICompatLLM


@model_registry.register_llm("openrouter", "*")
class OpenRouterLLM(OpenAICompatLLM):
    provider = "openrouter"
    default_model = "google/gemini-2.5-flash"

    def _build_chat_model(self, **kwargs: object) -> ChatOpenAI:
        cfg = self._cfg.openrouter
        headers = {"X-Title": cfg.site_name}
        if cfg.site_url:
            headers["HTTP-Referer"] = cfg.site_url
        return ChatOpenAI(
            model=self._model_name,
            api_key=(cfg.api_key or None),
            base_url=cfg.base_url,
            default_headers=headers,
            max_retries=0,
            **kwargs,
        )


__all__ = ["OpenRouterLLM"]
