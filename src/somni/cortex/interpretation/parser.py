"""Tolerant parsing of stage output.

Structured stages go through an ordered fallback:

1. strict JSON parse of the whole text
2. balanced-brace extraction (first `{` to its matching `}`), strict parse
3. lenient repair: single quotes, trailing commas, comments; then
   `ast.literal_eval` for Python-dict style output
4. give up: `parse_degraded`, raw text kept, cleaned summary attached

A successful parse is then validated against the stage's output schema.
Free-text stages are digested into `{"text", "symbols", "key_insights"}`.
Parsing never raises.
"""

from __future__ import annotations

import ast
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from somni.core.exceptions import ParseDegraded
from somni.core.types import StageStatus
from somni.modules.personas import StageDefinition, validate_payload

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_CHARS = 600

_FENCE_RE = re.compile(r"```[a-zA-Z]*")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
_SYMBOL_PATTERNS = (
    re.compile(r"symbols? of (?:the |a |an )?(\w+)", re.IGNORECASE),
    re.compile(r"(\w+) represents?", re.IGNORECASE),
    re.compile(r"(\w+) symboli[sz]es?", re.IGNORECASE),
)
_SYMBOL_STOPWORDS = frozenset(
    {"this", "that", "which", "what", "also", "often", "dream", "image", "there", "here", "it"}
)
MAX_SYMBOLS = 12
MAX_INSIGHTS = 3


@dataclass
class ParseOutcome:
    status: StageStatus
    parsed: Any = None
    warnings: list[str] = field(default_factory=list)
    fallback_summary: str | None = None
    strategy: str | None = None


# ---- JSON recovery ------------------------------------------------------------


def extract_balanced_object(text: str) -> str | None:
    """Return the first `{...}` span with balanced braces, or None.

    Braces inside single- or double-quoted strings are ignored, as are escaped
    quote characters.
    """
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    quote: str | None = None
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def repair_json(text: str) -> str:
    """Rewrite near-JSON into JSON.

    Converts single-quoted strings to double-quoted ones, drops `//` and
    `/* */` comments and removes trailing commas before `}` or `]`, all
    outside of string literals.
    """
    out: list[str] = []
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            # Copy a double-quoted string verbatim
            j = i + 1
            while j < n:
                if text[j] == "\\":
                    j += 2
                    continue
                if text[j] == '"':
                    break
                j += 1
            out.append(text[i : j + 1])
            i = j + 1
        elif ch == "'":
            j = i + 1
            buf: list[str] = []
            while j < n and text[j] != "'":
                if text[j] == "\\" and j + 1 < n:
                    nxt = text[j + 1]
                    buf.append("'" if nxt == "'" else "\\" + nxt)
                    j += 2
                    continue
                buf.append('\\"' if text[j] == '"' else text[j])
                j += 1
            out.append('"' + "".join(buf) + '"')
            i = j + 1
        elif ch == "/" and text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end < 0 else end
        elif ch == "/" and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
        elif ch == ",":
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
            out.append(ch)
            i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _literal_object(text: str) -> dict[str, Any] | None:
    try:
        value = ast.literal_eval(text)
    except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def recover_json_object(text: str) -> tuple[dict[str, Any] | None, str | None]:
    """Run the fallback chain; returns `(object, strategy)` or `(None, None)`."""
    stripped = text.strip()
    if not stripped:
        return None, None

    if (obj := _loads_object(stripped)) is not None:
        return obj, "strict"

    extracted = extract_balanced_object(stripped)
    if extracted is not None and (obj := _loads_object(extracted)) is not None:
        return obj, "balanced"

    candidate = extracted if extracted is not None else stripped
    if (obj := _loads_object(repair_json(candidate))) is not None:
        return obj, "repaired"
    if (obj := _literal_object(candidate)) is not None:
        return obj, "literal"
    return None, None


# ---- Free text ----------------------------------------------------------------


def clean_text(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def summarize(text: str, limit: int = DEFAULT_SUMMARY_CHARS) -> str:
    """Collapse whitespace and cut at a word boundary."""
    flat = " ".join(clean_text(text).split())
    if len(flat) <= limit:
        return flat
    cut = flat[:limit].rsplit(" ", 1)[0]
    return cut.rstrip(",;:") + "…"


def extract_symbols(text: str, lexicon: tuple[str, ...] | list[str] = ()) -> list[str]:
    found: list[str] = []
    for pattern in _SYMBOL_PATTERNS:
        for match in pattern.finditer(text):
            word = match.group(1).lower()
            if len(word) > 2 and word not in _SYMBOL_STOPWORDS:
                found.append(word)
    lowered = text.lower()
    for term in lexicon:
        if re.search(rf"\b{re.escape(term.lower())}\b", lowered):
            found.append(term.lower())
    return list(dict.fromkeys(found))[:MAX_SYMBOLS]


def extract_key_insights(text: str, limit: int = MAX_INSIGHTS) -> list[str]:
    flat = " ".join(text.split())
    return [s.strip() for s in _SENTENCE_RE.findall(flat)[:limit]]


def digest_free_text(text: str, lexicon: tuple[str, ...] | list[str] = ()) -> dict[str, Any]:
    cleaned = clean_text(text)
    return {
        "text": cleaned,
        "symbols": extract_symbols(cleaned, lexicon),
        "key_insights": extract_key_insights(cleaned),
    }


# ---- Parser ---------------------------------------------------------------------


class ResponseParser:
    def __init__(self, *, summary_chars: int = DEFAULT_SUMMARY_CHARS) -> None:
        self._summary_chars = summary_chars

    def parse(
        self,
        raw_text: str,
        stage: StageDefinition,
        *,
        lexicon: tuple[str, ...] | list[str] = (),
    ) -> ParseOutcome:
        if not stage.structured:
            return ParseOutcome(
                status=StageStatus.SUCCEEDED,
                parsed=digest_free_text(raw_text, lexicon),
                strategy="free_text",
            )

        obj, strategy = recover_json_object(raw_text)
        if obj is None:
            err = ParseDegraded(f"stage '{stage.name}' output is not a JSON object", stage=stage.name)
            logger.warning(
                "Stage %s: unparseable structured output (%d chars), keeping raw text",
                stage.name,
                len(raw_text),
            )
            return ParseOutcome(
                status=StageStatus.PARSE_DEGRADED,
                parsed=None,
                warnings=[f"{err.code}: {err.message}"],
                fallback_summary=summarize(raw_text, self._summary_chars),
            )

        warnings: list[str] = []
        if strategy != "strict":
            warnings.append(f"{stage.name}: output recovered via {strategy} parse")
            logger.debug("Stage %s: JSON recovered via %s parse", stage.name, strategy)

        if stage.output_schema is not None:
            obj, schema_warnings = validate_payload(obj, stage.output_schema)
            warnings.extend(f"{stage.name}: {w}" for w in schema_warnings)

        return ParseOutcome(
            status=StageStatus.SUCCEEDED, parsed=obj, warnings=warnings, strategy=strategy
        )


__all__ = [
    "ResponseParser",
    "ParseOutcome",
    "extract_balanced_object",
    "repair_json",
    "recover_json_object",
    "digest_free_text",
    "extract_symbols",
    "extract_key_insights",
    "summarize",
]
