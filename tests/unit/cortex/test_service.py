"""End-to-end interpretation runs with a canned model and a static knowledge base."""

from __future__ import annotations

import asyncio
import json
import logging

from somni.core.config import Config
from somni.core.types import DreamContext, RunStatus, StageStatus, ThemeScore
from somni.cortex.services import InterpretationService
from somni.modules.models import BaseModel, ModelResponse
from somni.modules.persistence import InMemoryInterpretationStore
from somni.modules.retrieval import StaticSimilarityService

HANG = object()

_MARKERS = {
    "relevance_assessment": "Assess the relevance",
    "json_formatting": "Format the dream interpretation",
    "full_interpretation": "Create a 400-600 word interpretation",
}

_KNOWLEDGE = {
    "themes": [
        {"code": "flying", "name": "Flying", "keywords": ["flying", "fly"]},
        {"code": "ocean", "name": "Ocean", "keywords": ["ocean", "sea"]},
    ],
    "fragments": [
        {
            "id": "jung-flight-01",
            "content": "Flying dreams often compensate a heavy, earthbound conscious attitude.",
            "themes": {"flying": 0.85},
        },
        {
            "id": "jung-flight-02",
            "content": "The urge to rise can signal inflation of the ego.",
            "themes": {"flying": 0.6},
            "content_type": "methodology",
        },
        {
            "id": "jung-ocean-01",
            "content": "The ocean is a classic image of the collective unconscious.",
            "themes": {"ocean": 0.9},
        },
    ],
}

_RELEVANCE = json.dumps(
    {
        "relevantThemes": ["flying", "ocean"],
        "relevantFragments": [{"id": "jung-flight-01", "relevance": 0.9, "reason": "flight"}],
        "focusAreas": ["compensation"],
    }
)

_INTERPRETATION = (
    "You rose above a dark ocean. The ocean represents the deep unconscious beneath you. "
    "Flying symbolizes a wish to escape a heavy attitude. Your shadow waits below the waves."
)

_FORMATTED = json.dumps(
    {
        "dreamTopic": "Flight over deep water",
        "quickTake": "You are lifting away from something heavy.",
        "interpretation": "You rose above the water.\n\nThe depths call you back.",
        "symbols": ["flying", "ocean"],
        "emotionalTone": {"primary": "awe", "intensity": 0.8},
        "interpretationCore": {
            "type": "jungian",
            "primaryInsight": "Compensation",
            "keyPattern": "Rising away",
            "personalGuidance": "Stay with the depths",
            "archetypalDynamics": {
                "primaryArchetype": "Self",
                "shadowElements": "Fear of depth",
                "compensatoryFunction": "Balances a heavy waking mood",
            },
            "individuationInsights": {
                "currentStage": "Meeting the shadow",
                "developmentalTask": "Descend",
                "integrationOpportunity": "Dialogue with fear",
            },
            "complexesIdentified": [],
            "collectiveThemes": ["flight"],
        },
        "practicalGuidance": ["Write down the feeling of flight"],
        "selfReflection": "What were you flying away from over that ocean?",
        "fragmentsUsed": ["jung-flight-01", "made-up-99"],
    }
)


class CannedModel(BaseModel):
    """Replies per stage, recognised by a phrase from each builtin stage prompt.

    An outcome can be a reply string, an exception to raise or HANG.
    """

    def __init__(self, **overrides):
        self.outcomes = {
            "relevance_assessment": _RELEVANCE,
            "full_interpretation": _INTERPRETATION,
            "json_formatting": _FORMATTED,
            **overrides,
        }
        self.calls: list[str] = []

    async def generate(self, request):
        stage = next(name for name, marker in _MARKERS.items() if marker in request.text)
        self.calls.append(stage)
        outcome = self.outcomes[stage]
        if outcome is HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, Exception):
            raise outcome
        return ModelResponse(text=outcome)


async def _no_sleep(_delay):
    return None


def _context(dream_id: str = "dream-1", **overrides) -> DreamContext:
    data = {
        "dream_id": dream_id,
        "owner_id": "user-1",
        "transcription": "I was flying over a dark ocean at night and felt free.",
        "themes": [ThemeScore(code="flying", score=0.9), ThemeScore(code="ocean", score=0.7)],
    }
    data.update(overrides)
    return DreamContext(**data)


def _service(model: BaseModel, *, pipeline: dict | None = None, store=None):
    cfg = Config.model_validate({"pipeline": pipeline or {}})
    return InterpretationService(
        config=cfg,
        similarity=StaticSimilarityService.from_dict(_KNOWLEDGE),
        model_factory=lambda _key: model,
        store=store,
        sleep=_no_sleep,
    )


class TestSuccessfulRun:
    def test_jung_interprets_flying_over_ocean(self):
        model = CannedModel()

        async def run():
            return await _service(model).interpret_dream(_context(), "jung")

        result = asyncio.run(run())

        assert result.status is RunStatus.SUCCEEDED
        assert result.ok
        assert result.persona == "jung"
        assert [s.stage for s in result.stages] == [
            "relevance_assessment",
            "full_interpretation",
            "json_formatting",
        ]
        assert all(s.status is StageStatus.SUCCEEDED for s in result.stages)
        assert result.payload["dreamTopic"] == "Flight over deep water"
        assert result.payload["interpretationCore"]["type"] == "jungian"
        assert result.fragments_used == ["jung-flight-01"]
        assert model.calls == ["relevance_assessment", "full_interpretation", "json_formatting"]

        interpretation = result.stages[1].parsed
        assert "ocean" in interpretation["symbols"]
        assert "shadow" in interpretation["symbols"]

        assert result.metadata["model_key"] == "custom"
        assert result.metadata["retrieval"]["fragments"] == 3
        assert [step["step"] for step in result.metadata["steps"]] == [
            "validate",
            "retrieve",
            "run_stages",
            "assemble",
        ]

    def test_two_fragment_knowledge_base(self):
        knowledge = {
            "fragments": [f for f in _KNOWLEDGE["fragments"] if f["id"] != "jung-flight-02"]
        }
        context = _context(
            transcription="I was flying over a vast ocean",
            themes=[ThemeScore(code="flying", score=0.8), ThemeScore(code="ocean", score=0.6)],
        )

        async def run():
            service = InterpretationService(
                config=Config(),
                similarity=StaticSimilarityService.from_dict(knowledge),
                model_factory=lambda _key: CannedModel(),
                sleep=_no_sleep,
            )
            return await service.interpret_dream(context, "jung")

        result = asyncio.run(run())

        assert result.status is RunStatus.SUCCEEDED
        assert result.metadata["retrieval"]["fragments"] == 2
        assert len(result.fragments_used) <= Config().retrieval.global_cap
        assert {"flying", "ocean"} <= set(result.stages[1].parsed["symbols"])
        assert {"flying", "ocean"} <= set(result.payload["symbols"])

    def test_same_inputs_give_same_output(self):
        async def run():
            first = await _service(CannedModel()).interpret_dream(_context(), "jung")
            second = await _service(CannedModel()).interpret_dream(_context(), "jung")
            return first, second

        first, second = asyncio.run(run())

        assert first.result_id != second.result_id
        assert first.payload == second.payload
        assert first.fragments_used == second.fragments_used
        assert [s.raw_text for s in first.stages] == [s.raw_text for s in second.stages]

    def test_retrieved_fragments_reach_the_prompt(self):
        seen: list[str] = []

        class RecordingModel(CannedModel):
            async def generate(self, request):
                seen.append(request.text)
                return await super().generate(request)

        async def run():
            return await _service(RecordingModel()).interpret_dream(_context(), "jung")

        asyncio.run(run())
        assert "[jung-flight-01]" in seen[0]
        assert "<<<DATA:dream" in seen[0]

    def test_no_themes_runs_without_knowledge(self):
        async def run():
            return await _service(CannedModel()).interpret_dream(_context(themes=[]), "jung")

        result = asyncio.run(run())
        assert result.status is RunStatus.SUCCEEDED
        assert result.fragments_used == []
        assert result.metadata["retrieval"]["no_knowledge_context"] is True

    def test_fragments_used_can_be_inspected_later(self):
        async def run():
            service = _service(CannedModel())
            result = await service.interpret_dream(_context(), "jung")
            return service, result

        service, result = asyncio.run(run())
        assert service.inspect_fragments_used(result.result_id) == ["jung-flight-01"]
        assert service.inspect_fragments_used("unknown") == []

    def test_list_personas(self):
        async def run():
            return _service(CannedModel()).list_personas()

        codes = [p.code for p in asyncio.run(run())]
        assert codes == ["freud", "jung", "lakshmi", "mary"]


class TestDegradedRuns:
    def test_optional_stage_failure_degrades(self):
        model = CannedModel(relevance_assessment=RuntimeError("503"))

        async def run():
            return await _service(model).interpret_dream(_context(), "jung")

        result = asyncio.run(run())

        assert result.status is RunStatus.DEGRADED
        assert result.stages[0].status is StageStatus.FAILED
        assert result.payload["dreamTopic"] == "Flight over deep water"
        assert "optional stage 'relevance_assessment' failed and was skipped" in result.warnings
        # One try plus one retry for the optional stage
        assert model.calls.count("relevance_assessment") == 2

    def test_unparseable_final_stage_returns_summary(self):
        model = CannedModel(
            json_formatting="Sorry, here is prose instead. It cites jung-flight-01 only."
        )

        async def run():
            return await _service(model).interpret_dream(_context(), "jung")

        result = asyncio.run(run())

        assert result.status is RunStatus.DEGRADED
        assert result.stages[-1].status is StageStatus.PARSE_DEGRADED
        assert result.payload == {
            "summary": "Sorry, here is prose instead. It cites jung-flight-01 only."
        }
        assert result.fragments_used == ["jung-flight-01"]
        assert model.calls.count("json_formatting") == 1

    def test_retrieval_failure_is_a_warning(self):
        class BrokenSimilarity:
            async def similar_themes(self, text):
                return []

            async def similar_fragments(self, theme_code, text, *, limit):
                raise ConnectionError("vector store down")

        async def run():
            service = InterpretationService(
                config=Config(),
                similarity=BrokenSimilarity(),
                model_factory=lambda _key: CannedModel(),
                sleep=_no_sleep,
            )
            return await service.interpret_dream(_context(), "jung")

        result = asyncio.run(run())
        assert result.status is RunStatus.SUCCEEDED
        assert result.fragments_used == []
        assert any(w.startswith("RETRIEVAL_DEGRADED") for w in result.warnings)


class TestFailedRuns:
    def test_required_stage_exhaustion_fails_the_run(self):
        model = CannedModel(full_interpretation=RuntimeError("upstream 500"))

        async def run():
            return await _service(model).interpret_dream(_context(), "jung")

        result = asyncio.run(run())

        assert result.status is RunStatus.FAILED
        assert not result.ok
        assert result.error.code == "PIPELINE_FAILED"
        assert result.error.stage == "full_interpretation"
        assert result.error.attempts == 3
        assert result.error.cause == "RuntimeError"
        assert [s.stage for s in result.stages] == ["relevance_assessment", "full_interpretation"]
        assert "json_formatting" not in model.calls

    def test_wall_clock_ceiling_times_out(self):
        model = CannedModel(full_interpretation=HANG)

        async def run():
            return await _service(model).interpret_dream(_context(), "jung", wall_clock_sec=0.2)

        result = asyncio.run(run())

        assert result.status is RunStatus.TIMED_OUT
        assert result.error.code == "PIPELINE_TIMEOUT"
        assert result.error.stage == "full_interpretation"
        assert [s.stage for s in result.stages] == ["relevance_assessment"]

    def test_invalid_request_makes_no_model_calls(self):
        model = CannedModel()

        async def run():
            return await _service(model).interpret_dream(_context(transcription="  "), "jung")

        result = asyncio.run(run())

        assert result.status is RunStatus.INVALID
        assert result.error.code == "VALIDATION_ERROR"
        assert model.calls == []

    def test_unknown_persona_is_invalid(self):
        async def run():
            return await _service(CannedModel()).interpret_dream(_context(), "adler")

        result = asyncio.run(run())
        assert result.status is RunStatus.INVALID
        assert "adler" in result.error.message

    def test_malformed_model_key_is_invalid(self):
        async def run():
            return await _service(CannedModel()).interpret_dream(
                _context(), "jung", model_key="gpt-4o"
            )

        result = asyncio.run(run())
        assert result.status is RunStatus.INVALID

    def test_unknown_model_provider_is_invalid(self):
        async def run():
            service = InterpretationService(
                config=Config.model_validate({}),
                similarity=StaticSimilarityService.from_dict(_KNOWLEDGE),
                sleep=_no_sleep,
            )
            return await service.interpret_dream(_context(), "jung", model_key="foo/bar")

        result = asyncio.run(run())
        assert result.status is RunStatus.INVALID
        assert result.error.code == "VALIDATION_ERROR"
        assert "foo/bar" in result.error.message
        assert result.stages == []


class TestConcurrency:
    def test_reject_mode_refuses_when_full(self):
        model = CannedModel(full_interpretation=HANG)

        async def run():
            service = _service(
                model,
                pipeline={"max_concurrent_runs": 1, "admission_mode": "reject", "retry_after_sec": 7},
            )
            first = asyncio.create_task(
                service.interpret_dream(_context("dream-a"), "jung", wall_clock_sec=0.3)
            )
            await asyncio.sleep(0.05)
            second = await service.interpret_dream(_context("dream-b"), "jung")
            return await first, second

        first, second = asyncio.run(run())

        assert first.status is RunStatus.TIMED_OUT
        assert second.status is RunStatus.REJECTED
        assert second.error.code == "ADMISSION_REJECTED"
        assert second.error.retry_after_sec == 7

    def test_queue_mode_rejects_after_admission_timeout(self):
        model = CannedModel(full_interpretation=HANG)

        async def run():
            service = _service(
                model, pipeline={"max_concurrent_runs": 1, "admission_timeout_sec": 0.05}
            )
            first = asyncio.create_task(
                service.interpret_dream(_context("dream-a"), "jung", wall_clock_sec=0.3)
            )
            await asyncio.sleep(0.05)
            second = await service.interpret_dream(_context("dream-b"), "jung")
            return await first, second

        first, second = asyncio.run(run())
        assert first.status is RunStatus.TIMED_OUT
        assert second.status is RunStatus.REJECTED

    def test_duplicate_requests_share_one_run(self):
        model = CannedModel()

        async def run():
            service = _service(model)
            return await asyncio.gather(
                service.interpret_dream(_context(), "jung"),
                service.interpret_dream(_context(), "Jung"),
            )

        first, second = asyncio.run(run())

        assert first.result_id == second.result_id
        assert model.calls.count("full_interpretation") == 1

    def test_cancelled_first_caller_leaves_shared_run_to_joiner(self):
        model = CannedModel(full_interpretation=HANG)

        async def run():
            service = _service(model)
            first = asyncio.create_task(
                service.interpret_dream(_context(), "jung", wall_clock_sec=0.3)
            )
            await asyncio.sleep(0.05)
            joiner = asyncio.create_task(service.interpret_dream(_context(), "jung"))
            await asyncio.sleep(0.01)
            first.cancel()
            result = await joiner
            return first, result

        first, result = asyncio.run(run())

        assert first.cancelled()
        assert result.status is RunStatus.TIMED_OUT
        assert result.error.stage == "full_interpretation"
        assert model.calls.count("full_interpretation") == 1

    def test_cancelling_the_only_caller_cancels_the_run(self):
        model = CannedModel(full_interpretation=HANG)

        async def run():
            service = _service(model)
            caller = asyncio.create_task(service.interpret_dream(_context(), "jung"))
            await asyncio.sleep(0.05)
            caller.cancel()
            await asyncio.sleep(0.05)
            return caller, dict(service._inflight)

        caller, inflight = asyncio.run(run())

        assert caller.cancelled()
        assert inflight == {}

    def test_different_personas_run_independently(self):
        model = CannedModel()

        async def run():
            service = _service(model)
            return await asyncio.gather(
                service.interpret_dream(_context(), "jung"),
                service.interpret_dream(_context(), "freud"),
            )

        jung, freud = asyncio.run(run())
        assert jung.persona == "jung"
        assert freud.persona == "freud"
        assert model.calls.count("full_interpretation") == 2


class TestPersistence:
    def test_result_is_stored(self):
        store = InMemoryInterpretationStore()

        async def run():
            result = await _service(CannedModel(), store=store).interpret_dream(_context(), "jung")
            return result, await store.get("dream-1", "jung")

        result, stored = asyncio.run(run())
        assert stored is not None
        assert stored.result_id == result.result_id
        assert len(store) == 1

    def test_store_failure_is_logged_not_raised(self, caplog):
        class BrokenStore:
            async def save(self, result):
                raise OSError("disk full")

        async def run():
            return await _service(CannedModel(), store=BrokenStore()).interpret_dream(
                _context(), "jung"
            )

        with caplog.at_level(logging.ERROR):
            result = asyncio.run(run())

        assert result.status is RunStatus.SUCCEEDED
        assert "Failed to persist result" in caplog.text
