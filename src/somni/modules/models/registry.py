"""Model registry for generation providers.

Providers are addressed by `provider/name` keys (`openrouter/google/gemini-2.5-flash`,
`openai/gpt-4o-mini`). The provider part selects the class; everything after the
first slash is passed through as `model_name`.

There is no process-wide "current model": callers pass the key they want (or
rely on `config.models.default_llm`) on every lookup.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar, cast

from somni.core import Config, get_core_config

from .base import BaseModel
from .types import (
    ModelExhaustedError,
    ModelQuotaExhaustedError,
    ModelRateLimitError,
    ModelRequest,
    ModelResponse,
    ModelTimeoutError,
)

logger = logging.getLogger(__name__)

# Built-in model mappings
BUILTIN_LLMS: dict[str, str] = {
    "openai/*": "somni.modules.models.llm.openai.OpenAILLM",
    "openrouter/*": "somni.modules.models.llm.openrouter.OpenRouterLLM",
}


TItem = TypeVar("TItem")


class Registry(Generic[TItem]):
    """Minimal registry for model components."""

    def __init__(self, *, name: str, builtin_map: dict[str, str] | None = None) -> None:
        self._name = name
        self._items: dict[str, TItem] = {}
        self._builtin_map: dict[str, str] = builtin_map or {}

    def get(self, key: str) -> TItem:
        k = key.strip()
        if k not in self._items:
            raw: str | None = None

            # Exact builtin
            if k in self._builtin_map:
                raw = self._builtin_map[k]
            elif "/" in k:
                # Wildcard provider registration: `provider/*` matches any `provider/<name>`.
                provider, _name = k.split("/", 1)
                wildcard = f"{provider}/*"
                if wildcard in self._items:
                    return self._items[wildcard]
                if wildcard in self._builtin_map:
                    raw = self._builtin_map[wildcard]

            if raw is not None:
                # Lazy import
                if ":" in raw:
                    mod_name, attr = raw.split(":", 1)
                else:
                    mod_name, attr = raw.rsplit(".", 1)
                mod = importlib.import_module(mod_name)
                self._items[k] = cast(TItem, getattr(mod, attr))

        if k not in self._items:
            raise KeyError(f"{self._name}: unknown key '{k}'")
        return self._items[k]

    def register(self, key: str, value: TItem, *, overwrite: bool = False) -> None:
        k = key.strip()
        if not k:
            raise ValueError(f"{self._name}: registry key must be non-empty")
        if not overwrite and k in self._items:
            raise KeyError(f"{self._name}: '{k}' already registered")
        self._items[k] = value


@dataclass(frozen=True)
class ModelKey:
    provider: str
    name: str

    def as_str(self) -> str:
        return f"{self.provider}/{self.name}"


class ModelRegistry:
    def __init__(self) -> None:
        # Lazy builtin import map: keep startup fast and avoid importing provider SDKs.
        self._llms: Registry[type[BaseModel]] = Registry(name="llms", builtin_map=BUILTIN_LLMS)

    def register_llm(
        self, provider: str, name: str, *, overwrite: bool = False
    ) -> Callable[[type[BaseModel]], type[BaseModel]]:
        key = ModelKey(provider=provider, name=name).as_str()

        def decorator(cls: type[BaseModel]) -> type[BaseModel]:
            self._llms.register(key, cls, overwrite=overwrite)
            return cls

        return decorator

    def has_llm(self, key: str) -> bool:
        """True when `key` resolves to a registered or builtin provider."""
        try:
            self._llms.get(key)
        except KeyError:
            return False
        return True

    def create_llm(self, key: str, *, config: Config | None = None, **kwargs: object) -> BaseModel:
        cfg = config or get_core_config()
        k = key.strip()
        if "/" not in k:
            raise ValueError("LLM key must be 'provider/name' (e.g. 'openai/gpt-4o-mini')")
        cls = self._llms.get(k)
        if "model_name" not in kwargs:
            _provider, name = k.split("/", 1)
            kwargs = dict(kwargs)
            kwargs["model_name"] = name
        ctor = cast(Callable[..., BaseModel], cls)
        return ctor(cfg, **kwargs)

    def get_llm(self, key: str | None = None, *, config: Config | None = None) -> BaseModel:
        cfg = config or get_core_config()
        return self.create_llm(key or cfg.models.default_llm, config=cfg)

    def get_llm_with_fallback(
        self,
        key: str | None = None,
        *,
        fallback_keys: list[str] | None = None,
        config: Config | None = None,
    ) -> BaseModel:
        """Get a model that walks `key` and then `fallback_keys` in order.

        Args:
            key: Primary model key (provider/name); defaults to `models.default_llm`
            fallback_keys: Fallback model keys; defaults to `models.fallback_llms`
            config: Configuration object
        """
        cfg = config or get_core_config()

        primary_key = key or cfg.models.default_llm
        candidate_keys = [primary_key]
        candidate_keys.extend(
            fallback_keys if fallback_keys is not None else cfg.models.fallback_llms
        )

        # Remove duplicates while preserving order
        unique_keys = list(dict.fromkeys(k.strip() for k in candidate_keys if k.strip()))

        logger.debug("Model fallback candidates: %s", unique_keys)
        return FallbackModel(registry=self, candidate_keys=unique_keys, config=cfg)


class FallbackModel(BaseModel):
    """Model wrapper that tries candidates sequentially until one succeeds."""

    def __init__(
        self,
        registry: ModelRegistry,
        candidate_keys: list[str],
        config: Config,
    ) -> None:
        self._registry = registry
        self._candidate_keys = candidate_keys
        self._config = config
        self._candidates: list[tuple[str, BaseModel]] | None = None

    @property
    def candidate_keys(self) -> list[str]:
        return list(self._candidate_keys)

    def _get_candidates(self) -> list[tuple[str, BaseModel]]:
        """Lazy initialization of candidate models."""
        if self._candidates is None:
            self._candidates = []
            for key in self._candidate_keys:
                try:
                    model = self._registry.create_llm(key, config=self._config)
                except Exception as e:  # missing SDK, unknown key, missing API key
                    logger.warning("Failed to initialize model %s: %s", key, e)
                    continue
                self._candidates.append((key, model))
        return self._candidates

    async def generate(self, request: ModelRequest) -> ModelResponse:
        candidates = self._get_candidates()
        if not candidates:
            raise ModelExhaustedError(
                "No candidate models could be initialized. "
                "Check provider dependencies and API keys in your config."
            )

        last_error: Exception | None = None
        for key, model in candidates:
            try:
                logger.debug("Trying model %s for generation", key)
                response = await model.generate(request)
                if response.usage:
                    logger.debug(
                        "Generation succeeded with model %s, usage: %s", key, response.usage
                    )
                return response
            except ModelQuotaExhaustedError as e:
                # Quota exhausted = billing issue, fallback immediately (no retries help)
                logger.warning("Model %s quota exhausted, trying fallback: %s", key, e)
                last_error = e
            except (ModelTimeoutError, ModelRateLimitError) as e:
                logger.warning("Model %s failed (%s): %s", key, type(e).__name__, e)
                last_error = e
            except Exception as e:
                logger.error("Model %s failed with unexpected error: %s", key, e)
                last_error = e

        error_msg = f"All {len(candidates)} candidate models failed"
        if last_error:
            error_msg += f". Last error: {type(last_error).__name__}"
        raise ModelExhaustedError(error_msg, cause=last_error)


model_registry = ModelRegistry()

__all__ = ["ModelRegistry", "model_registry", "ModelKey", "FallbackModel", "Registry"]
