"""ContaminationDetector: catches prior-turn detail bleeding into a new answer."""

from __future__ import annotations

import logging

from ..types import ContaminationAssessment, LLMProvider, ModelOptions
from .json_extract import coerce_bool, coerce_score, coerce_str_list, decode_or_default

logger = logging.getLogger(__name__)

CONTAMINATION_SYSTEM_PROMPT = (
    "You detect and repair context contamination in conversations."
)

CONTAMINATION_PROMPT = """\
Previous exchange:
User: {prev_question}
Assistant: {prev_response}

Current exchange:
User: {new_question}
Assistant (candidate answer): {candidate}

Analyze the current exchange for context contamination: content from the \
previous exchange inappropriately influencing the current answer. Check:
1. Does the candidate answer keep following the previous topic when it should not?
2. Does it include details from the previous exchange unrelated to the new question?
3. Does it assume the previous exchange and mention things not relevant to the new question?

Respond with JSON only:
{{
  "isContaminated": true or false,
  "contaminationScore": 0-100 (100 = fully contaminated),
  "contaminatedSegments": ["contaminated passage", ...],
  "explanation": "short explanation",
  "cleanedResponse": "the answer with the contamination removed"
}}"""

WARNING_PREFIX = "⚠️ **주의**: 이전 대화의 내용이 현재 응답에 영향을 미칠 수 있습니다."
NOTE_PREFIX = "ℹ️ **참고**: 이 응답은 부분적으로 이전 대화의 맥락을 포함하고 있습니다."


def clean_assessment(explanation: str = "") -> ContaminationAssessment:
    return ContaminationAssessment(
        is_contaminated=False,
        contamination_score=0,
        cleaned_response=None,
        explanation=explanation,
        source="fallback",
    )


def parse_contamination_assessment(text: str | None) -> ContaminationAssessment:
    def build(data: dict) -> ContaminationAssessment:
        cleaned = data.get("cleanedResponse")
        cleaned = cleaned.strip() if isinstance(cleaned, str) and cleaned.strip() else None
        return ContaminationAssessment(
            is_contaminated=coerce_bool(data.get("isContaminated")),
            contamination_score=coerce_score(data.get("contaminationScore"), 0),
            cleaned_response=cleaned,
            contaminated_segments=coerce_str_list(data.get("contaminatedSegments")),
            explanation=str(data.get("explanation") or ""),
        )

    return decode_or_default(
        text, build, lambda: clean_assessment("analysis unavailable"), "contamination",
    )


def add_contamination_warning(response: str, contamination_score: int) -> str:
    """Prefix a notice scaled to the contamination score (>70 warning, >30 note)."""
    if contamination_score > 70:
        return f"{WARNING_PREFIX}\n\n{response}"
    if contamination_score > 30:
        return f"{NOTE_PREFIX}\n\n{response}"
    return response


class ContaminationDetector:
    """Model-as-classifier. ``detect`` never raises."""

    def __init__(self, llm: LLMProvider, options: ModelOptions | None = None) -> None:
        self.llm = llm
        self.options = options or ModelOptions(max_tokens=2000, temperature=0.2)

    async def detect(
        self,
        prev_question: str,
        prev_response: str,
        new_question: str,
        candidate: str,
    ) -> ContaminationAssessment:
        messages = [
            {"role": "system", "content": CONTAMINATION_SYSTEM_PROMPT},
            {"role": "user", "content": CONTAMINATION_PROMPT.format(
                prev_question=prev_question,
                prev_response=prev_response,
                new_question=new_question,
                candidate=candidate,
            )},
        ]
        try:
            raw = await self.llm.respond(messages, self.options)
        except Exception as e:
            logger.warning("Contamination check failed, assuming clean: %s", e)
            return clean_assessment("model error")

        assessment = parse_contamination_assessment(raw)
        logger.info(
            "Contamination assessment: score=%d contaminated=%s cleaned=%s (%s)",
            assessment.contamination_score, assessment.is_contaminated,
            assessment.cleaned_response is not None, assessment.source,
        )
        return assessment
