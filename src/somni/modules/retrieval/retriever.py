"""Theme-driven knowledge fragment retrieval.

Flow:
    themes >= acceptance_floor
    -> one similarity query per theme (concurrent, each under a timeout)
    -> drop hits below similarity_floor
    -> combined = theme score * similarity, dedupe by fragment id
    -> deterministic ordering
    -> per-theme cap (on the fragment's best theme) and global cap

Retrieval is best effort. A failing theme query is recorded as a warning and
the remaining themes still contribute; nothing here aborts a run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from somni.core.config import RetrievalConfig
from somni.core.exceptions import RetrievalDegraded
from somni.core.types import KnowledgeFragment, ThemeScore

from .base import FragmentHit, SimilarityService

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    fragments: list[KnowledgeFragment] = field(default_factory=list)
    themes_used: list[ThemeScore] = field(default_factory=list)
    no_knowledge_context: bool = False
    degraded: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def fragment_ids(self) -> list[str]:
        return [f.id for f in self.fragments]

    def summary(self) -> dict[str, object]:
        return {
            "fragments": len(self.fragments),
            "themes": [t.code for t in self.themes_used],
            "no_knowledge_context": self.no_knowledge_context,
            "degraded": self.degraded,
        }


def _sort_key(fragment: KnowledgeFragment) -> tuple[float, float, float, str]:
    return (
        -fragment.combined_score,
        -fragment.theme_relevance,
        -fragment.similarity,
        fragment.id,
    )


def accepted_themes(themes: list[ThemeScore] | tuple[ThemeScore, ...], floor: float) -> list[ThemeScore]:
    """Themes at or above `floor`, one per code (highest score wins), best first."""
    best: dict[str, ThemeScore] = {}
    for theme in themes:
        if theme.score < floor:
            continue
        current = best.get(theme.code)
        if current is None or theme.score > current.score:
            best[theme.code] = theme
    return sorted(best.values(), key=lambda t: (-t.score, t.code))


def merge_candidates(
    hits_by_theme: list[tuple[ThemeScore, list[FragmentHit]]],
    *,
    similarity_floor: float,
) -> list[KnowledgeFragment]:
    """Score and dedupe hits across themes; returns fragments in final order.

    A fragment found under several themes keeps its best-scoring hit; its
    `themes` list starts with that best theme and accumulates the others.
    """
    merged: dict[str, KnowledgeFragment] = {}
    for theme, hits in hits_by_theme:
        for hit in hits:
            if hit.similarity < similarity_floor:
                continue
            candidate = KnowledgeFragment(
                id=hit.id,
                content=hit.content,
                themes=[theme.code],
                content_type=hit.content_type,
                source=hit.source,
                similarity=hit.similarity,
                theme_relevance=theme.score,
                combined_score=theme.score * hit.similarity,
            )
            existing = merged.get(hit.id)
            if existing is None:
                merged[hit.id] = candidate
                continue
            if _sort_key(candidate) < _sort_key(existing):
                others = [code for code in existing.themes if code != theme.code]
                candidate.themes = [theme.code, *others]
                merged[hit.id] = candidate
            elif theme.code not in existing.themes:
                existing.themes.append(theme.code)
    return sorted(merged.values(), key=_sort_key)


def apply_caps(
    fragments: list[KnowledgeFragment], *, per_theme_cap: int, global_cap: int
) -> list[KnowledgeFragment]:
    """Truncate an ordered list, at most `per_theme_cap` per primary theme."""
    selected: list[KnowledgeFragment] = []
    per_theme: dict[str, int] = {}
    for fragment in fragments:
        if len(selected) >= global_cap:
            break
        theme = fragment.primary_theme or ""
        if per_theme.get(theme, 0) >= per_theme_cap:
            continue
        per_theme[theme] = per_theme.get(theme, 0) + 1
        selected.append(fragment)
    return selected


class FragmentRetriever:
    """Turns relevance-scored themes into a bounded, diverse set of fragments."""

    def __init__(self, service: SimilarityService, config: RetrievalConfig) -> None:
        self._service = service
        self._cfg = config

    async def retrieve(
        self, text: str, themes: list[ThemeScore] | tuple[ThemeScore, ...]
    ) -> RetrievalResult:
        result = RetrievalResult()

        themes = list(themes)
        if not themes and self._cfg.detect_themes:
            themes = await self._detect_themes(text, result)

        accepted = accepted_themes(themes, self._cfg.acceptance_floor)
        result.themes_used = accepted
        if not accepted:
            logger.info(
                "No themes above acceptance floor %.2f (%d given); continuing without knowledge",
                self._cfg.acceptance_floor,
                len(themes),
            )
            result.no_knowledge_context = True
            return result

        outcomes = await asyncio.gather(
            *(self._query_theme(theme, text) for theme in accepted),
            return_exceptions=True,
        )

        hits_by_theme: list[tuple[ThemeScore, list[FragmentHit]]] = []
        for theme, outcome in zip(accepted, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                err = RetrievalDegraded(f"theme '{theme.code}' query failed", cause=outcome)
                logger.warning(
                    "Fragment query for theme %s failed (%s)", theme.code, type(outcome).__name__
                )
                result.degraded = True
                result.warnings.append(f"{err.code}: {err.message} ({err.cause})")
                continue
            hits_by_theme.append((theme, outcome))

        ordered = merge_candidates(hits_by_theme, similarity_floor=self._cfg.similarity_floor)
        result.fragments = apply_caps(
            ordered,
            per_theme_cap=self._cfg.per_theme_cap,
            global_cap=self._cfg.global_cap,
        )
        result.no_knowledge_context = not result.fragments

        logger.debug(
            "Retrieved %d fragments (%d candidates) for themes %s",
            len(result.fragments),
            len(ordered),
            [t.code for t in accepted],
        )
        return result

    async def _query_theme(self, theme: ThemeScore, text: str) -> list[FragmentHit]:
        return await asyncio.wait_for(
            self._service.similar_fragments(theme.code, text, limit=self._cfg.top_n),
            timeout=self._cfg.timeout_sec,
        )

    async def _detect_themes(self, text: str, result: RetrievalResult) -> list[ThemeScore]:
        try:
            themes = await asyncio.wait_for(
                self._service.similar_themes(text), timeout=self._cfg.timeout_sec
            )
        except Exception as e:
            logger.warning("Theme detection failed (%s)", type(e).__name__)
            result.degraded = True
            result.warnings.append(f"{RetrievalDegraded.code}: theme detection failed")
            return []
        logger.debug("Detected themes: %s", [(t.code, t.score) for t in themes])
        return list(themes)


__all__ = [
    "FragmentRetriever",
    "RetrievalResult",
    "accepted_themes",
    "merge_candidates",
    "apply_caps",
]
