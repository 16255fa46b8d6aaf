"""Main configuration class that combines all config modules."""

import logging
import tomllib
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from .base import get_bool_env, get_env, get_float_env, get_int_env, get_list_env
from .models import LLMConfig, ModelsConfig
from .pipeline import PersonasConfig, PipelineConfig, RetrievalConfig
from .providers import OpenAIConfig, OpenRouterConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "settings.toml"


class Config(BaseModel):
    """Main configuration class for somni.

    This combines all configuration modules into a single, hierarchical structure.
    Configuration is loaded from multiple sources in priority order:
    1. Environment variables
    2. TOML configuration file
    3. Default values

    Treat a loaded Config as read-only; services receive it explicitly.
    """

    model_config = ConfigDict(extra="ignore")

    # Core settings
    debug: bool = False
    log_level: str = "INFO"

    # Sub-configurations
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    personas: PersonasConfig = Field(default_factory=PersonasConfig)

    # Provider configurations
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    openrouter: OpenRouterConfig = Field(default_factory=OpenRouterConfig)

    # Internal state
    loaded_from: list[Path] = Field(default_factory=list)

    @classmethod
    def load(cls, config_path: Path | str | None = None) -> "Config":
        """Load configuration from files and environment."""
        load_dotenv()

        config = cls()

        explicit_path = config_path or get_env("SOMNI_CONFIG_PATH")
        toml_path = Path(explicit_path) if explicit_path else Path.cwd() / DEFAULT_CONFIG_FILENAME
        if toml_path.exists():
            try:
                with open(toml_path, "rb") as f:
                    toml_data = tomllib.load(f)

                toml_data.pop("loaded_from", None)

                # Merge TOML sections over defaults (one level deep) using Pydantic
                config_dict = config.model_dump()
                for key, value in toml_data.items():
                    if isinstance(value, dict) and isinstance(config_dict.get(key), dict):
                        config_dict[key].update(value)
                    else:
                        config_dict[key] = value
                config = cls.model_validate(config_dict)
                config.loaded_from.append(toml_path)
            except (OSError, tomllib.TOMLDecodeError, ValueError) as e:
                logger.warning("Failed to load TOML config from %s: %s", toml_path, e)

        # Override with environment variables
        config._apply_env_overrides()

        return config

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to config."""
        # Model configuration
        if llm_val := get_env("SOMNI_DEFAULT_LLM"):
            self.models.default_llm = llm_val
        if (fallbacks := get_list_env("SOMNI_FALLBACK_LLMS")) is not None:
            self.models.fallback_llms = fallbacks
        if (temperature := get_float_env("SOMNI_LLM_TEMPERATURE")) is not None:
            self.llm.temperature = temperature
        if (timeout := get_float_env("SOMNI_LLM_TIMEOUT_SEC")) is not None:
            self.llm.timeout_sec = timeout

        # Provider configuration
        if openai_key := get_env("OPENAI_API_KEY"):
            self.openai.api_key = openai_key
        if openai_org := get_env("OPENAI_ORGANIZATION"):
            self.openai.organization = openai_org
        if openrouter_key := get_env("OPENROUTER_API_KEY"):
            self.openrouter.api_key = openrouter_key
        if openrouter_url := get_env("OPENROUTER_BASE_URL"):
            self.openrouter.base_url = openrouter_url
        if site_url := get_env("SOMNI_SITE_URL"):
            self.openrouter.site_url = site_url

        # Retrieval configuration
        if (v := get_float_env("SOMNI_RETRIEVAL_ACCEPTANCE_FLOOR")) is not None:
            self.retrieval.acceptance_floor = v
        if (v := get_float_env("SOMNI_RETRIEVAL_SIMILARITY_FLOOR")) is not None:
            self.retrieval.similarity_floor = v
        if (n := get_int_env("SOMNI_RETRIEVAL_TOP_N")) is not None:
            self.retrieval.top_n = n
        if (n := get_int_env("SOMNI_RETRIEVAL_PER_THEME_CAP")) is not None:
            self.retrieval.per_theme_cap = n
        if (n := get_int_env("SOMNI_RETRIEVAL_GLOBAL_CAP")) is not None:
            self.retrieval.global_cap = n
        if (detect := get_bool_env("SOMNI_RETRIEVAL_DETECT_THEMES")) is not None:
            self.retrieval.detect_themes = detect

        # Pipeline configuration
        if (v := get_float_env("SOMNI_PIPELINE_WALL_CLOCK_SEC")) is not None:
            self.pipeline.wall_clock_sec = v
        if (n := get_int_env("SOMNI_PIPELINE_MAX_CONCURRENT_RUNS")) is not None:
            self.pipeline.max_concurrent_runs = n
        if mode := get_env("SOMNI_PIPELINE_ADMISSION_MODE"):
            if mode in ("queue", "reject"):
                self.pipeline.admission_mode = mode
            else:
                logger.warning("Ignoring unknown SOMNI_PIPELINE_ADMISSION_MODE=%r", mode)

        # Personas
        if (paths := get_list_env("SOMNI_PERSONA_PATHS")) is not None:
            self.personas.paths = paths

        # Debug/Logging
        if debug_val := get_bool_env("SOMNI_DEBUG"):
            self.debug = debug_val
        if log_level := get_env("SOMNI_LOG_LEVEL"):
            self.log_level = log_level


# ---- Global config management ----

_GLOBAL_CONFIG: Config | None = None


def get_core_config() -> Config:
    """Return process-global core config (for framework modules)."""
    global _GLOBAL_CONFIG
    if _GLOBAL_CONFIG is None:
        _GLOBAL_CONFIG = Config.load()
    return _GLOBAL_CONFIG


def set_core_config(config: Config) -> None:
    """Set the global core config."""
    global _GLOBAL_CONFIG
    _GLOBAL_CONFIG = config
