"""Similarity service contract consumed by the fragment retriever.

The retriever never talks to an embedding model or vector index directly; it
only sees relevance scores through this protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from somni.core.types import ContentType, ThemeScore


@dataclass(frozen=True)
class FragmentHit:
    """One candidate fragment returned for one theme query."""

    id: str
    content: str
    similarity: float
    content_type: ContentType = "theory"
    source: str | None = None


@runtime_checkable
class SimilarityService(Protocol):
    async def similar_themes(self, text: str) -> list[ThemeScore]:
        """Score themes against free text (used only when a request has no themes)."""
        ...

    async def similar_fragments(
        self, theme_code: str, text: str, *, limit: int
    ) -> list[FragmentHit]:
        """Return up to `limit` fragments filed under `theme_code`, scored against `text`."""
        ...


__all__ = ["FragmentHit", "SimilarityService"]
