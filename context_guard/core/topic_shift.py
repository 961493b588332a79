"""TopicShiftDetector: does a new question continue the previous exchange?"""

from __future__ import annotations

import logging

from ..types import LLMProvider, ModelOptions, TopicAssessment
from .json_extract import coerce_bool, coerce_score, decode_or_default

logger = logging.getLogger(__name__)

NEUTRAL_SIMILARITY = 50

TOPIC_SYSTEM_PROMPT = (
    "You analyze the continuity and relatedness of conversation topics."
)

TOPIC_PROMPT = """\
Previous exchange:
User: {prev_question}
Assistant: {prev_response}

New question:
User: {new_question}

Decide whether the new question continues the topic of the previous exchange \
or starts a different one. If it is an entirely different topic, the previous \
conversation context should be reset.

Respond with JSON only:
{{
  "isNewTopic": true or false (true when the topic is new),
  "similarity": 0-100 (topic similarity, 100 = the same topic),
  "analysis": "one or two sentences on how the topics relate",
  "shouldResetContext": true or false (true when the context should be reset)
}}"""


def should_reset_context(
    similarity: int,
    contamination_score: int,
    similarity_threshold: int = 30,
    contamination_threshold: int = 70,
) -> bool:
    """Either signal alone warrants a reset: low similarity or heavy contamination."""
    return similarity < similarity_threshold or contamination_score > contamination_threshold


def neutral_assessment(analysis: str = "") -> TopicAssessment:
    return TopicAssessment(
        is_new_topic=False,
        similarity=NEUTRAL_SIMILARITY,
        analysis=analysis,
        should_reset_context=False,
        source="fallback",
    )


def parse_topic_assessment(text: str | None) -> TopicAssessment:
    """Decode-or-default: malformed output yields the neutral assessment."""

    def build(data: dict) -> TopicAssessment:
        return TopicAssessment(
            is_new_topic=coerce_bool(data.get("isNewTopic")),
            similarity=coerce_score(data.get("similarity"), NEUTRAL_SIMILARITY),
            analysis=str(data.get("analysis") or ""),
            should_reset_context=coerce_bool(data.get("shouldResetContext")),
        )

    return decode_or_default(
        text, build, lambda: neutral_assessment("analysis unavailable"), "topic-shift",
    )


class TopicShiftDetector:
    """Model-as-classifier judging topic continuity. ``detect`` never raises."""

    def __init__(self, llm: LLMProvider, options: ModelOptions | None = None) -> None:
        self.llm = llm
        self.options = options or ModelOptions(max_tokens=1000, temperature=0.2)

    async def detect(self, prev_question: str, prev_response: str, new_question: str) -> TopicAssessment:
        messages = [
            {"role": "system", "content": TOPIC_SYSTEM_PROMPT},
            {"role": "user", "content": TOPIC_PROMPT.format(
                prev_question=prev_question,
                prev_response=prev_response,
                new_question=new_question,
            )},
        ]
        try:
            raw = await self.llm.respond(messages, self.options)
        except Exception as e:
            logger.warning("Topic-shift check failed, treating as same topic: %s", e)
            return neutral_assessment("model error")

        assessment = parse_topic_assessment(raw)
        logger.info(
            "Topic assessment: similarity=%d new_topic=%s reset=%s (%s)",
            assessment.similarity, assessment.is_new_topic,
            assessment.should_reset_context, assessment.source,
        )
        return assessment
