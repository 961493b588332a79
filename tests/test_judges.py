"""Tests for the model-as-classifier judges: topic shift, contamination, verification."""

import json
from datetime import datetime, timezone

import pytest

from context_guard.core.contamination import (
    NOTE_PREFIX,
    WARNING_PREFIX,
    ContaminationDetector,
    add_contamination_warning,
    parse_contamination_assessment,
)
from context_guard.core.topic_shift import (
    TopicShiftDetector,
    parse_topic_assessment,
    should_reset_context,
)
from context_guard.core.verifier import (
    LIMITED_INFO_PREFIX,
    LOW_CONFIDENCE_PREFIX,
    ResponseVerifier,
    add_confidence_disclaimer,
    parse_verification,
)
from context_guard.types import AssembledContext, LLMProviderError
from tests.conftest import ScriptedLLM, judgment


class TestShouldResetContext:
    @pytest.mark.parametrize("similarity,contamination,expected", [
        (29, 0, True),
        (30, 0, False),
        (100, 70, False),
        (100, 71, True),
        (10, 90, True),
    ])
    def test_thresholds(self, similarity, contamination, expected):
        assert should_reset_context(similarity, contamination) is expected

    def test_custom_thresholds(self):
        assert should_reset_context(45, 0, similarity_threshold=50)
        assert not should_reset_context(100, 60, contamination_threshold=60)


class TestTopicShift:
    def test_parse_valid(self):
        a = parse_topic_assessment(judgment(
            isNewTopic=True, similarity=12, analysis="different", shouldResetContext=True,
        ))
        assert a.is_new_topic and a.should_reset_context
        assert a.similarity == 12
        assert a.analysis == "different"
        assert a.source == "llm"

    @pytest.mark.parametrize("text", ["", "I think it's related.", "{broken", None])
    def test_parse_failure_is_neutral(self, text):
        a = parse_topic_assessment(text)
        assert a.is_new_topic is False
        assert a.similarity == 50
        assert a.should_reset_context is False
        assert a.source == "fallback"

    def test_non_numeric_similarity_reads_as_fifty(self):
        a = parse_topic_assessment('{"isNewTopic": false, "similarity": "unknown"}')
        assert a.similarity == 50

    @pytest.mark.asyncio
    async def test_detect_sends_both_exchanges(self):
        llm = ScriptedLLM(topic=judgment(isNewTopic=False, similarity=90, shouldResetContext=False))
        a = await TopicShiftDetector(llm).detect("서울 날씨?", "맑아요.", "내일은?")
        assert a.similarity == 90
        prompt = llm.user_prompts("topic")[0]
        assert "User: 서울 날씨?" in prompt
        assert "Assistant: 맑아요." in prompt
        assert "User: 내일은?" in prompt
        assert llm.calls_for("topic")[0]["options"].temperature == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_detect_model_error_is_neutral(self):
        llm = ScriptedLLM(topic=LLMProviderError("down", provider="mock"))
        a = await TopicShiftDetector(llm).detect("q", "a", "q2")
        assert (a.similarity, a.should_reset_context, a.source) == (50, False, "fallback")


class TestContamination:
    def test_parse_valid(self):
        a = parse_contamination_assessment(judgment(
            isContaminated=True,
            contaminationScore=85,
            contaminatedSegments=["mentions Busan"],
            explanation="previous city leaked",
            cleanedResponse="  Python lists are mutable.  ",
        ))
        assert a.is_contaminated
        assert a.contamination_score == 85
        assert a.cleaned_response == "Python lists are mutable."
        assert a.contaminated_segments == ["mentions Busan"]

    def test_empty_cleaned_response_is_none(self):
        a = parse_contamination_assessment(judgment(isContaminated=True, contaminationScore=80, cleanedResponse=""))
        assert a.cleaned_response is None

    def test_parse_failure_is_clean(self):
        a = parse_contamination_assessment("cannot tell")
        assert (a.is_contaminated, a.contamination_score, a.cleaned_response) == (False, 0, None)
        assert a.source == "fallback"

    @pytest.mark.parametrize("score,prefix", [(71, WARNING_PREFIX), (31, NOTE_PREFIX)])
    def test_warning_prefixes(self, score, prefix):
        assert add_contamination_warning("본문", score) == f"{prefix}\n\n본문"

    @pytest.mark.parametrize("score", [0, 30])
    def test_no_warning_when_low(self, score):
        assert add_contamination_warning("본문", score) == "본문"

    @pytest.mark.asyncio
    async def test_detect_includes_candidate(self):
        llm = ScriptedLLM()
        await ContaminationDetector(llm).detect("pq", "pa", "nq", "candidate text")
        prompt = llm.user_prompts("contamination")[0]
        assert "Assistant (candidate answer): candidate text" in prompt
        assert "User: pq" in prompt

    @pytest.mark.asyncio
    async def test_detect_model_error_is_clean(self):
        llm = ScriptedLLM(contamination=RuntimeError("boom"))
        a = await ContaminationDetector(llm).detect("pq", "pa", "nq", "c")
        assert a.contamination_score == 0 and a.cleaned_response is None


class TestVerifier:
    def test_reliable_keeps_original(self):
        v = parse_verification(judgment(isReliable=True, confidenceScore=88, improvedResponse="other"), "original")
        assert v.is_reliable
        assert v.verified_response == "original"
        assert v.confidence_score == 88

    def test_unreliable_substitutes_improved(self):
        v = parse_verification(judgment(
            isReliable=False, confidenceScore=20, hallucinations=["made-up date"], improvedResponse="fixed",
        ), "original")
        assert v.verified_response == "fixed"
        assert v.hallucinations == ["made-up date"]

    def test_unreliable_without_improvement_keeps_original(self):
        v = parse_verification(judgment(isReliable=False, confidenceScore=20, improvedResponse=""), "original")
        assert v.verified_response == "original"

    def test_parse_failure_is_unverified(self):
        v = parse_verification("not json", "original")
        assert v.verified_response == "original"
        assert v.confidence_score == 0
        assert v.source == "fallback"

    @pytest.mark.parametrize("score,expected", [
        (10, f"{LOW_CONFIDENCE_PREFIX}\n\nr"),
        (29, f"{LOW_CONFIDENCE_PREFIX}\n\nr"),
        (30, f"{LIMITED_INFO_PREFIX}\n\nr"),
        (69, f"{LIMITED_INFO_PREFIX}\n\nr"),
        (70, "r"),
    ])
    def test_confidence_disclaimer(self, score, expected):
        assert add_confidence_disclaimer("r", score) == expected

    def test_messages_carry_context_sections(self):
        ctx = AssembledContext(
            question="오늘 날씨?",
            topic="weather",
            sections={"weather": "맑음 18°C", "summary": ""},
        )
        messages = ResponseVerifier(ScriptedLLM()).build_messages(ctx, "맑아요")
        prompt = messages[1]["content"]
        assert 'User question: "오늘 날씨?"' in prompt
        assert json.dumps({"weather": "맑음 18°C"}, ensure_ascii=False, indent=2) in prompt
        assert '"맑아요"' in prompt

    def test_messages_carry_context_timestamp(self):
        ctx = AssembledContext(
            question="오늘 며칠이야?",
            timestamp=datetime(2026, 10, 18, 3, 0, tzinfo=timezone.utc),
        )
        prompt = ResponseVerifier(ScriptedLLM()).build_messages(ctx, "18일이에요")[1]["content"]
        assert "Context timestamp: 2026-10-18T03:00:00+00:00" in prompt

    @pytest.mark.asyncio
    async def test_verify_model_error_keeps_original(self):
        llm = ScriptedLLM(verify=LLMProviderError("down", provider="mock"))
        v = await ResponseVerifier(llm).verify(AssembledContext(question="q"), "original")
        assert v.verified_response == "original"
        assert v.is_reliable is False
