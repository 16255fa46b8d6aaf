"""Tolerant stage-output parsing."""

from __future__ import annotations

from somni.core.types import StageStatus
from somni.cortex.interpretation.parser import (
    ResponseParser,
    digest_free_text,
    extract_balanced_object,
    extract_symbols,
    recover_json_object,
    repair_json,
    summarize,
)
from somni.modules.personas import StageDefinition


def _structured(fields: list[dict] | None = None) -> StageDefinition:
    return StageDefinition.model_validate(
        {
            "name": "json_formatting",
            "prompt_template": "x",
            "output_format": "structured",
            "output_schema": {"fields": fields or [{"name": "a", "type": "string"}]},
        }
    )


_FREE_TEXT = StageDefinition(name="full_interpretation", prompt_template="x")


class TestRecoverJsonObject:
    def test_strict(self):
        assert recover_json_object('{"a": "b"}') == ({"a": "b"}, "strict")

    def test_object_wrapped_in_prose(self):
        text = 'Here is the result: {"a": "b", "n": {"x": 1}} Hope this helps.'
        assert recover_json_object(text) == ({"a": "b", "n": {"x": 1}}, "balanced")

    def test_fenced_object_after_prose(self):
        text = "Here is the result:\n```json\n{\"a\": {\"b\": 1}}\n```\nThanks"
        obj, _ = recover_json_object(text)
        assert obj == {"a": {"b": 1}}

    def test_code_fence(self):
        text = '```json\n{"a": "b"}\n```'
        obj, strategy = recover_json_object(text)
        assert obj == {"a": "b"}
        assert strategy == "balanced"

    def test_single_quotes_and_trailing_comma(self):
        obj, strategy = recover_json_object("{'a': 'b',}")
        assert obj == {"a": "b"}
        assert strategy == "repaired"

    def test_comments_are_dropped(self):
        text = '{\n  "a": 1, // the answer\n  /* note */ "b": [1, 2,],\n}'
        assert recover_json_object(text) == ({"a": 1, "b": [1, 2]}, "repaired")

    def test_python_literal(self):
        obj, strategy = recover_json_object("{'ok': True, 'n': None}")
        assert obj == {"ok": True, "n": None}
        assert strategy == "literal"

    def test_unrecoverable(self):
        assert recover_json_object("I cannot answer that.") == (None, None)
        assert recover_json_object("") == (None, None)

    def test_braces_inside_strings_do_not_confuse_extraction(self):
        text = 'prefix {"a": "}{", "b": "it\\"s"} suffix'
        assert extract_balanced_object(text) == '{"a": "}{", "b": "it\\"s"}'

    def test_repair_keeps_double_quoted_strings(self):
        assert repair_json('{"url": "http://x//y", \'k\': \'it"s\'}') == (
            '{"url": "http://x//y", "k": "it\\"s"}'
        )


class TestFreeText:
    def test_digest_shape(self):
        text = (
            "The ocean represents the vast unconscious. Flying symbolizes release. "
            "Your shadow appears as a stranger. A fourth sentence follows."
        )
        digest = digest_free_text(text, lexicon=("shadow",))
        assert digest["text"] == text
        assert digest["symbols"] == ["ocean", "flying", "shadow"]
        assert len(digest["key_insights"]) == 3
        assert digest["key_insights"][0] == "The ocean represents the vast unconscious."

    def test_symbol_stopwords_are_ignored(self):
        assert extract_symbols("This represents change.") == []

    def test_summarize_cuts_on_word_boundary(self):
        text = "word " * 200
        summary = summarize(text, limit=50)
        assert summary.endswith("…")
        assert len(summary) <= 51
        assert "  " not in summary


class TestResponseParser:
    def test_free_text_stage_is_digested(self):
        outcome = ResponseParser().parse("```\nThe sea represents depth.\n```", _FREE_TEXT)
        assert outcome.status is StageStatus.SUCCEEDED
        assert outcome.parsed["text"] == "The sea represents depth."
        assert outcome.parsed["symbols"] == ["sea"]

    def test_structured_stage_validates_against_schema(self):
        stage = _structured(
            [
                {"name": "a", "type": "string"},
                {"name": "score", "type": "number", "maximum": 1.0},
            ]
        )
        outcome = ResponseParser().parse('{"a": "b", "score": 2}', stage)
        assert outcome.status is StageStatus.SUCCEEDED
        assert outcome.parsed == {"a": "b", "score": 1.0}
        assert outcome.strategy == "strict"
        assert any("clamped" in w for w in outcome.warnings)

    def test_non_finite_numbers_fall_back_to_default(self):
        stage = _structured(
            [
                {
                    "name": "emotionalTone",
                    "type": "object",
                    "fields": [
                        {"name": "primary", "type": "string"},
                        {"name": "intensity", "type": "number", "minimum": 0.0, "maximum": 1.0},
                    ],
                },
                {"name": "clarity", "type": "number", "minimum": 0.0, "maximum": 1.0, "default": 0.5},
            ]
        )
        outcome = ResponseParser().parse(
            '{"emotionalTone": {"primary": "awe", "intensity": NaN}, "clarity": "nan"}', stage
        )
        assert outcome.parsed["emotionalTone"] == {"primary": "awe", "intensity": 0.0}
        assert outcome.parsed["clarity"] == 0.5
        assert "emotionalTone.intensity: nan is not a finite number; used default" in outcome.warnings
        assert not any("clamped" in w for w in outcome.warnings)

    def test_recovery_strategy_is_reported(self):
        outcome = ResponseParser().parse("{'a': 'b',}", _structured())
        assert outcome.parsed == {"a": "b"}
        assert "json_formatting: output recovered via repaired parse" in outcome.warnings

    def test_unparseable_output_is_degraded_not_raised(self):
        raw = "I'm sorry, " + "this is not json. " * 60
        outcome = ResponseParser(summary_chars=100).parse(raw, _structured())
        assert outcome.status is StageStatus.PARSE_DEGRADED
        assert outcome.parsed is None
        assert outcome.fallback_summary.endswith("…")
        assert len(outcome.fallback_summary) <= 101
        assert outcome.warnings[0].startswith("PARSE_DEGRADED")
