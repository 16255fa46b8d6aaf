"""somni: persona-driven, multi-stage dream interpretation.

Usage:
    from somni import InterpretationService, DreamContext, ThemeScore
"""

from __future__ import annotations

from somni.core.types import DreamContext, InterpretationResult, RunStatus, ThemeScore
from somni.cortex.services import InterpretationService

__version__ = "0.3.0"

__all__ = [
    "DreamContext",
    "InterpretationResult",
    "InterpretationService",
    "RunStatus",
    "ThemeScore",
    "__version__",
]
