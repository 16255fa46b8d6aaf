"""Modular configuration system for somni."""

from .base import (
    get_bool_env,
    get_env,
    get_float_env,
    get_int_env,
    get_list_env,
)
from .main import (
    Config,
    get_core_config,
    set_core_config,
)
from .models import (
    LLMConfig,
    ModelsConfig,
)
from .pipeline import (
    PersonasConfig,
    PipelineConfig,
    RetrievalConfig,
)
from .providers import (
    OpenAIConfig,
    OpenRouterConfig,
)

__all__ = [
    # Main classes
    "Config",
    # Main functions
    "get_core_config",
    "set_core_config",
    # Base utilities
    "get_env",
    "get_bool_env",
    "get_float_env",
    "get_int_env",
    "get_list_env",
    # Model configs
    "ModelsConfig",
    "LLMConfig",
    # Pipeline configs
    "RetrievalConfig",
    "PipelineConfig",
    "PersonasConfig",
    # Provider configs
    "OpenAIConfig",
    "OpenRouterConfig",
]
