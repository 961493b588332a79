"""ResponseVerifier: is a generated answer supported by the context it was given?"""

from __future__ import annotations

import json
import logging

from ..types import AssembledContext, LLMProvider, ModelOptions, VerificationAssessment
from .json_extract import coerce_bool, coerce_score, coerce_str_list, decode_or_default

logger = logging.getLogger(__name__)

VERIFIER_SYSTEM_PROMPT = (
    "You verify the factuality and accuracy of AI answers."
)

VERIFIER_PROMPT = """\
Below are a user's question, the context that was supplied to the AI, and the AI's answer.

User question: "{question}"
Conversation topic: {topic}
Context timestamp: {timestamp}

Supplied context:
{context}

AI answer:
"{response}"

Evaluate the answer:
1. Is it based only on the supplied context?
2. Does it contain invented information or hallucinations?
3. Does it answer the user's question appropriately?

Respond with JSON only:
{{
  "isReliable": true or false,
  "confidenceScore": 0-100,
  "hallucinations": ["unsupported claim", ...],
  "recommendation": "what should be corrected",
  "improvedResponse": "a corrected answer, if one is needed"
}}"""

LOW_CONFIDENCE_PREFIX = "⚠️ **낮은 신뢰도 경고**: 이 응답에는 확실하지 않은 정보가 포함되어 있을 수 있습니다."
LIMITED_INFO_PREFIX = "ℹ️ **참고**: 이 응답은 제한된 정보를 기반으로 생성되었습니다."


def unverified(response: str, recommendation: str = "") -> VerificationAssessment:
    """Neutral result: keep the original answer, claim no confidence."""
    return VerificationAssessment(
        is_reliable=False,
        confidence_score=0,
        verified_response=response,
        recommendation=recommendation,
        source="fallback",
    )


def parse_verification(text: str | None, response: str) -> VerificationAssessment:
    """The improved answer replaces the original only when judged unreliable."""

    def build(data: dict) -> VerificationAssessment:
        reliable = coerce_bool(data.get("isReliable"))
        improved = data.get("improvedResponse")
        improved = improved.strip() if isinstance(improved, str) else ""
        return VerificationAssessment(
            is_reliable=reliable,
            confidence_score=coerce_score(data.get("confidenceScore"), 0),
            verified_response=improved if (not reliable and improved) else response,
            hallucinations=coerce_str_list(data.get("hallucinations")),
            recommendation=str(data.get("recommendation") or ""),
        )

    return decode_or_default(
        text, build, lambda: unverified(response, "verification unavailable"), "verification",
    )


def add_confidence_disclaimer(response: str, confidence_score: int) -> str:
    """Prefix a notice scaled to confidence (<30 warning, <70 note)."""
    if confidence_score < 30:
        return f"{LOW_CONFIDENCE_PREFIX}\n\n{response}"
    if confidence_score < 70:
        return f"{LIMITED_INFO_PREFIX}\n\n{response}"
    return response


class ResponseVerifier:
    """Model-as-classifier grounding check. ``verify`` never raises."""

    def __init__(self, llm: LLMProvider, options: ModelOptions | None = None) -> None:
        self.llm = llm
        self.options = options or ModelOptions(max_tokens=2000, temperature=0.2)

    def build_messages(self, context: AssembledContext, response: str) -> list[dict]:
        payload = context.verification_payload()
        return [
            {"role": "system", "content": VERIFIER_SYSTEM_PROMPT},
            {"role": "user", "content": VERIFIER_PROMPT.format(
                question=payload["question"],
                topic=payload["topic"] or "(none)",
                timestamp=payload["timestamp"],
                context=json.dumps(payload["context"], ensure_ascii=False, indent=2),
                response=response,
            )},
        ]

    async def verify(self, context: AssembledContext, response: str) -> VerificationAssessment:
        try:
            raw = await self.llm.respond(self.build_messages(context, response), self.options)
        except Exception as e:
            logger.warning("Verification failed, keeping original answer: %s", e)
            return unverified(response, "model error")

        assessment = parse_verification(raw, response)
        logger.info(
            "Verification: reliable=%s confidence=%d substituted=%s (%s)",
            assessment.is_reliable, assessment.confidence_score,
            assessment.verified_response != response, assessment.source,
        )
        return assessment
