"""In-process similarity service backed by a JSON knowledge file.

Intended for the CLI, local experiments and tests. It is not a vector index:
theme membership and base similarity are declared in the file, and a small
lexical-overlap term makes scores depend on the dream text.

File shape::

    {
      "themes": [
        {"code": "flying", "name": "Flying", "keywords": ["fly", "flying", "soar"]}
      ],
      "fragments": [
        {
          "id": "jung-flight-01",
          "content": "Flight in dreams often ...",
          "themes": {"flying": 0.82},
          "content_type": "theory",
          "source": "CW 8"
        }
      ]
    }
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from somni.core.exceptions import ValidationError
from somni.core.types import ThemeScore

from .base import FragmentHit

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z][a-z']+")

# Share of the score contributed by lexical overlap with the dream text.
LEXICAL_WEIGHT = 0.2


def _tokens(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 2}


@dataclass
class _Theme:
    code: str
    name: str
    keywords: list[str] = field(default_factory=list)


@dataclass
class _Fragment:
    id: str
    content: str
    weights: dict[str, float]
    content_type: str = "theory"
    source: str | None = None


class StaticSimilarityService:
    def __init__(self, themes: list[_Theme], fragments: list[_Fragment]) -> None:
        self._themes = themes
        self._fragments = fragments
        self._by_theme: dict[str, list[_Fragment]] = {}
        for frag in fragments:
            for code in frag.weights:
                self._by_theme.setdefault(code, []).append(frag)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StaticSimilarityService":
        themes = [
            _Theme(
                code=str(t["code"]),
                name=str(t.get("name") or t["code"]),
                keywords=[str(k).lower() for k in t.get("keywords", [])],
            )
            for t in data.get("themes", [])
        ]
        fragments: list[_Fragment] = []
        for raw in data.get("fragments", []):
            try:
                weights = raw["themes"]
                if isinstance(weights, list):
                    weights = {code: 1.0 for code in weights}
                fragments.append(
                    _Fragment(
                        id=str(raw["id"]),
                        content=str(raw["content"]),
                        weights={str(k): float(v) for k, v in weights.items()},
                        content_type=str(raw.get("content_type", "theory")),
                        source=raw.get("source"),
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ValidationError(f"invalid knowledge fragment entry: {raw!r:.80}", cause=e) from e
        return cls(themes, fragments)

    @classmethod
    def from_file(cls, path: Path | str) -> "StaticSimilarityService":
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationError(f"cannot read knowledge file {p}", cause=e) from e
        service = cls.from_dict(data)
        logger.info(
            "Loaded knowledge file %s: %d themes, %d fragments",
            p,
            len(service._themes),
            len(service._fragments),
        )
        return service

    async def similar_themes(self, text: str) -> list[ThemeScore]:
        words = _tokens(text)
        scores: list[ThemeScore] = []
        for theme in self._themes:
            hits = sum(1 for k in theme.keywords if k in words)
            if hits:
                score = min(1.0, 0.4 + 0.2 * hits)
                scores.append(ThemeScore(code=theme.code, score=score, name=theme.name))
        return sorted(scores, key=lambda t: (-t.score, t.code))

    async def similar_fragments(
        self, theme_code: str, text: str, *, limit: int
    ) -> list[FragmentHit]:
        words = _tokens(text)
        hits: list[FragmentHit] = []
        for frag in self._by_theme.get(theme_code, []):
            frag_words = _tokens(frag.content)
            overlap = len(words & frag_words) / len(frag_words) if frag_words else 0.0
            base = max(0.0, min(1.0, frag.weights[theme_code]))
            similarity = round((1 - LEXICAL_WEIGHT) * base + LEXICAL_WEIGHT * min(1.0, overlap), 6)
            hits.append(
                FragmentHit(
                    id=frag.id,
                    content=frag.content,
                    similarity=similarity,
                    content_type=frag.content_type,  # type: ignore[arg-type]
                    source=frag.source,
                )
            )
        hits.sort(key=lambda h: (-h.similarity, h.id))
        return hits[:limit]


__all__ = ["StaticSimilarityService"]
