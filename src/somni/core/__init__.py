"""Core: configuration, shared types and the exception hierarchy."""

from __future__ import annotations

from .config import Config, get_core_config, set_core_config
from .exceptions import SomniError

__all__ = ["Config", "get_core_config", "set_core_config", "SomniError"]
