"""Model layer (generation providers) decoupled from the pipeline."""

from __future__ import annotations

from .base import BaseModel
from .registry import FallbackModel, ModelRegistry, model_registry
from .types import ModelRequest, ModelResponse, TextPart

__all__ = [
    "BaseModel",
    "FallbackModel",
    "ModelRegistry",
    "model_registry",
    "ModelRequest",
    "ModelResponse",
    "TextPart",
]
