"""Service layer."""

from __future__ import annotations

from .interpretation import InterpretationService

__all__ = ["InterpretationService"]
