"""ContextAssembler: merge summary, similar exchanges and auxiliary facts into one prompt."""

from __future__ import annotations

import logging
from typing import Callable

from ..patterns import wants_datetime, wants_weather
from ..token_counter import estimate_tokens, truncate_to_tokens
from ..tools.datetime_tool import DateTimeTool
from ..tools.search import clean_search_query, format_search_results
from ..tools.weather import WEATHER_UNAVAILABLE_NOTE, extract_location, format_weather
from ..types import (
    AssembledContext,
    AssemblerConfig,
    ConfigurationError,
    LLMProvider,
    LLMProviderError,
    ModelOptions,
    ProviderError,
    SearchProvider,
    SimilarConversation,
    StoreError,
    WeatherProvider,
)
from .similarity import SimilarityIndex
from .summary import SummaryStore

logger = logging.getLogger(__name__)

# Highest priority first; over-budget sections are dropped from the end
SECTION_PRIORITY = ("datetime", "weather", "summary", "search", "similar")

SECTION_HEADERS = {
    "summary": "Summary of the conversation so far:",
    "similar": "Related earlier exchanges in this thread:",
    "datetime": "",
    "weather": "Weather:",
    "search": "Web search findings:",
}

POLICY_FOOTER = """\
Answer using only the information supplied above and what the user said. \
If the supplied information is not enough to answer, say so plainly and \
state what is uncertain. Never invent facts, figures, dates or sources."""

SEARCH_QUERY_SYSTEM_PROMPT = (
    "You write web search queries. Reply with one short search query and nothing else."
)

SEARCH_QUERY_PROMPT = """\
{context}Write one effective search engine query for the following question. Reply with the query only.

Question: {question}"""

SEARCH_SUMMARY_SYSTEM_PROMPT = "You summarize web search results concisely."

SEARCH_SUMMARY_PROMPT = """\
Summarize only the key points of the search results below that are relevant to \
the query. Leave out results unrelated to the query.

Query: {query}

Search results:
{results}

Summary:"""


def format_similar(conversations: list[SimilarConversation]) -> str:
    return "\n\n".join(
        f"User: {c.user_message}\nAssistant: {c.bot_response}" for c in conversations
    )


class ContextAssembler:
    """Build one bounded prompt plus a per-source trace.

    Date/weather lookups and the web search are mutually exclusive per turn:
    a date or weather question never triggers a search.
    """

    def __init__(
        self,
        llm: LLMProvider,
        summaries: SummaryStore,
        similarity: SimilarityIndex,
        datetime_tool: DateTimeTool | None = None,
        weather: WeatherProvider | None = None,
        search: SearchProvider | None = None,
        config: AssemblerConfig | None = None,
        token_counter: Callable[[str], int] | None = None,
        default_location: str = "서울",
        search_count: int = 5,
        query_options: ModelOptions | None = None,
        search_summary_options: ModelOptions | None = None,
    ) -> None:
        self.llm = llm
        self.summaries = summaries
        self.similarity = similarity
        self.config = config or AssemblerConfig()
        self.datetime_tool = datetime_tool or DateTimeTool(self.config.timezone, self.config.locale)
        self.weather = weather
        self.search = search
        self.token_counter = token_counter or estimate_tokens
        self.default_location = default_location
        self.search_count = search_count
        self.query_options = query_options or ModelOptions(max_tokens=100, temperature=0.2)
        self.search_summary_options = search_summary_options or ModelOptions(max_tokens=1000, temperature=0.3)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def _summary_section(self, thread_id: str, ctx: AssembledContext) -> str:
        try:
            return (await self.summaries.get(thread_id)).strip()
        except StoreError as e:
            logger.warning("Summary unavailable for thread %s: %s", thread_id, e)
            ctx.degraded.append("summary")
            return ""

    async def _similar_section(self, thread_id: str, question: str, ctx: AssembledContext) -> str:
        try:
            conversations = await self.similarity.query(thread_id, question)
        except StoreError as e:
            logger.warning("Similar exchanges unavailable for thread %s: %s", thread_id, e)
            ctx.degraded.append("similar")
            return ""
        return format_similar(conversations)

    async def _weather_section(self, question: str) -> str:
        if self.weather is None:
            return WEATHER_UNAVAILABLE_NOTE
        location = extract_location(question, self.default_location)
        logger.info("Weather question detected, location=%s", location)
        try:
            report = await self.weather.lookup(location)
        except ConfigurationError as e:
            logger.warning("Weather provider disabled: %s", e)
            self.weather = None
            return WEATHER_UNAVAILABLE_NOTE
        except ProviderError as e:
            logger.warning("Weather lookup for %s failed: %s", location, e)
            return WEATHER_UNAVAILABLE_NOTE
        return format_weather(report, self.datetime_tool.format_date())

    async def generate_search_query(self, question: str, summary: str = "") -> str:
        context = f"Conversation so far: {summary}\n\n" if summary else ""
        messages = [
            {"role": "system", "content": SEARCH_QUERY_SYSTEM_PROMPT},
            {"role": "user", "content": SEARCH_QUERY_PROMPT.format(context=context, question=question)},
        ]
        try:
            raw = await self.llm.respond(messages, self.query_options)
        except LLMProviderError as e:
            logger.warning("Search query generation failed, searching the question itself: %s", e)
            return question
        return clean_search_query(raw) or question

    async def _search_section(self, question: str, summary: str, ctx: AssembledContext) -> str:
        if self.search is None:
            return ""
        query = await self.generate_search_query(question, summary)
        ctx.search_query = query
        try:
            results = await self.search.search(query, self.search_count)
        except ConfigurationError as e:
            logger.warning("Search provider disabled: %s", e)
            self.search = None
            return ""
        except ProviderError as e:
            logger.warning("Search for %r failed: %s", query, e)
            ctx.degraded.append("search")
            return ""
        if not results:
            logger.info("Search for %r returned no results", query)
            return ""

        messages = [
            {"role": "system", "content": SEARCH_SUMMARY_SYSTEM_PROMPT},
            {"role": "user", "content": SEARCH_SUMMARY_PROMPT.format(
                query=query, results=format_search_results(results),
            )},
        ]
        try:
            summary_text = await self.llm.respond(messages, self.search_summary_options)
        except LLMProviderError as e:
            logger.warning("Search result summary failed: %s", e)
            ctx.degraded.append("search")
            return ""
        return (summary_text or "").strip()

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _fit_budget(self, sections: dict[str, str], ctx: AssembledContext) -> dict[str, str]:
        fitted: dict[str, str] = {}
        for name in SECTION_PRIORITY:
            text = sections.get(name, "")
            if text:
                fitted[name] = truncate_to_tokens(text, self.config.section_max_tokens, self.token_counter)

        # Headers, topic, question and footer count against the total as well
        for name in reversed(SECTION_PRIORITY):
            if self._prompt_tokens(fitted, ctx) <= self.config.total_max_tokens:
                break
            if name in fitted:
                logger.info("Dropping %s section to fit the context budget", name)
                del fitted[name]

        ctx.budget_breakdown = {name: self.token_counter(text) for name, text in fitted.items()}
        ctx.total_tokens = self._prompt_tokens(fitted, ctx)
        return fitted

    def _prompt_tokens(self, sections: dict[str, str], ctx: AssembledContext) -> int:
        return self.token_counter(self.compose_prompt(sections, ctx.question, ctx.topic))

    def compose_prompt(self, sections: dict[str, str], question: str, topic: str = "") -> str:
        parts: list[str] = []
        blocks = []
        for name in SECTION_PRIORITY:
            text = sections.get(name)
            if not text:
                continue
            header = SECTION_HEADERS[name]
            blocks.append(f"{header}\n{text}" if header else text)
        if blocks:
            parts.append("Reference information:\n\n" + "\n\n".join(blocks))
        if topic:
            parts.append(f"Conversation topic: {topic}")
        parts.append(f"User question: {question}")
        parts.append(POLICY_FOOTER)
        return "\n\n".join(parts)

    async def assemble(
        self,
        thread_id: str,
        question: str,
        reset: bool,
        topic: str = "",
    ) -> AssembledContext:
        ctx = AssembledContext(question=question, topic=topic, reset=reset)
        raw: dict[str, str] = {}

        if not reset:
            raw["summary"] = await self._summary_section(thread_id, ctx)
            raw["similar"] = await self._similar_section(thread_id, question, ctx)

        is_datetime = wants_datetime(question)
        is_weather = wants_weather(question)
        if is_datetime:
            raw["datetime"] = self.datetime_tool.describe()
        if is_weather:
            raw["weather"] = await self._weather_section(question)
        if not (is_datetime or is_weather):
            raw["search"] = await self._search_section(question, raw.get("summary", ""), ctx)

        sections = self._fit_budget(raw, ctx)
        ctx.sections = sections
        for name in ctx.sources:
            ctx.sources[name] = bool(sections.get(name))
        ctx.prompt = self.compose_prompt(sections, question, topic)

        logger.info(
            "Context for thread %s: reset=%s sources=%s tokens=%d",
            thread_id, reset,
            ",".join(n for n, present in ctx.sources.items() if present) or "none",
            ctx.total_tokens,
        )
        logger.debug("Assembled prompt:\n%s", ctx.prompt)
        return ctx
