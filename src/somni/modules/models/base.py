"""Base interface for generation providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .types import ModelRequest, ModelResponse


class BaseModel(ABC):
    """Text generation model interface.

    Providers must implement `generate()`. Transport or model failures are
    raised as `ModelError` subclasses; anything else propagates unchanged.
    """

    @abstractmethod
    async def generate(self, request: ModelRequest) -> ModelResponse:
        """Generate a response from the model."""
        raise NotImplementedError


__all__ = ["BaseModel"]
