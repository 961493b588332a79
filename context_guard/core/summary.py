"""SummaryStore: one rolling compressed-context string per thread."""

from __future__ import annotations

import logging

from ..storage.helpers import summary_key
from ..types import KeyValueStore, LLMProvider, LLMProviderError, ModelOptions, StoreError

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """\
You compress conversations. Write a summary of at most 200 words that keeps only \
the information needed to continue the conversation coherently: the subject, \
facts the user stated, questions still open, and conclusions reached. \
Write the summary in the language the conversation uses. Output only the summary text."""

SUMMARY_WITH_PRIOR_PROMPT = """\
Prior summary:
{summary}

New exchange:
User: {user_message}
Assistant: {bot_response}

Fold the new exchange into the prior summary."""

SUMMARY_FIRST_PROMPT = """\
Exchange:
User: {user_message}
Assistant: {bot_response}

Summarize this exchange."""


class SummaryStore:
    """Get/set/clear the per-thread summary and regenerate it through the model.

    ``clear`` stores an empty string (an explicit reset); ``delete`` removes
    the key outright and is used when the thread itself goes away.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        llm: LLMProvider,
        ttl_seconds: int = 86_400,
        key_prefix: str = "thread",
        options: ModelOptions | None = None,
    ) -> None:
        self.kv = kv
        self.llm = llm
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.options = options or ModelOptions(max_tokens=500, temperature=0.3)

    def _key(self, thread_id: str) -> str:
        return summary_key(self.key_prefix, thread_id)

    async def get(self, thread_id: str) -> str:
        return await self.kv.get(self._key(thread_id)) or ""

    async def set(self, thread_id: str, text: str) -> None:
        key = self._key(thread_id)
        await self.kv.set(key, text)
        await self.kv.expire(key, self.ttl_seconds)

    async def clear(self, thread_id: str) -> None:
        await self.set(thread_id, "")
        logger.info("Summary reset for thread %s", thread_id)

    async def delete(self, thread_id: str) -> None:
        await self.kv.delete(self._key(thread_id))

    def build_prompt(self, prior: str, user_message: str, bot_response: str) -> str:
        if prior.strip():
            return SUMMARY_WITH_PRIOR_PROMPT.format(
                summary=prior.strip(), user_message=user_message, bot_response=bot_response,
            )
        return SUMMARY_FIRST_PROMPT.format(user_message=user_message, bot_response=bot_response)

    async def regenerate(self, thread_id: str, user_message: str, bot_response: str) -> str | None:
        """Replace the summary with a compaction of prior summary + latest pair.

        Returns the new summary, or None when the previous one was left in
        place (model error, empty output, or store failure).
        """
        try:
            prior = await self.get(thread_id)
        except StoreError as e:
            logger.warning("Summary read failed for thread %s, not regenerating: %s", thread_id, e)
            return None

        messages = [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {"role": "user", "content": self.build_prompt(prior, user_message, bot_response)},
        ]
        try:
            text = (await self.llm.respond(messages, self.options) or "").strip()
        except LLMProviderError as e:
            logger.warning("Summary generation failed for thread %s, keeping previous: %s", thread_id, e)
            return None

        if not text:
            logger.warning("Summary generation returned nothing for thread %s, keeping previous", thread_id)
            return None

        try:
            await self.set(thread_id, text)
        except StoreError as e:
            logger.warning("Summary write failed for thread %s: %s", thread_id, e)
            return None

        logger.debug("Summary for thread %s regenerated (%d chars)", thread_id, len(text))
        return text
