"""Knowledge fragment retrieval."""

from __future__ import annotations

from .base import FragmentHit, SimilarityService
from .retriever import FragmentRetriever, RetrievalResult
from .static import StaticSimilarityService

__all__ = [
    "FragmentHit",
    "SimilarityService",
    "FragmentRetriever",
    "RetrievalResult",
    "StaticSimilarityService",
]
