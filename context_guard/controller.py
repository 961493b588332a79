"""SessionController: runs one conversational turn end to end.

START -> RESET_CHECK -> CONTEXT_ASSEMBLY -> GENERATION -> VERIFICATION
-> CONTAMINATION_CHECK -> PERSIST -> DONE, with ERROR reachable from any
state. Judgment and store failures degrade to logged defaults; only an
unexpected exception ends the turn in ERROR, which the transport sees as
the configured apology message.
"""

from __future__ import annotations

import logging
import time
import uuid

from .core.assembler import ContextAssembler
from .core.contamination import ContaminationDetector, add_contamination_warning
from .core.embeddings import Embedder
from .core.history import HistoryStore
from .core.similarity import SimilarityIndex
from .core.summary import SummaryStore
from .core.topic_shift import TopicShiftDetector, should_reset_context
from .core.verifier import ResponseVerifier, add_confidence_disclaimer
from .metrics import TurnMetrics
from .token_counter import create_token_counter
from .tools.datetime_tool import DateTimeTool
from .types import (
    ContextGuardConfig,
    KeyValueStore,
    LLMProvider,
    LLMProviderError,
    Message,
    ModelOptions,
    SearchProvider,
    SimilarityBackend,
    StoreError,
    TurnResult,
    TurnState,
    WeatherProvider,
)

logger = logging.getLogger(__name__)


class SessionController:
    """Composes the stores, judges and assembler around one model."""

    def __init__(
        self,
        llm: LLMProvider,
        history: HistoryStore,
        summaries: SummaryStore,
        similarity: SimilarityIndex,
        topic_detector: TopicShiftDetector,
        assembler: ContextAssembler,
        verifier: ResponseVerifier,
        contamination_detector: ContaminationDetector,
        config: ContextGuardConfig | None = None,
        metrics: TurnMetrics | None = None,
        resources: list | None = None,
    ) -> None:
        self.llm = llm
        self.history = history
        self.summaries = summaries
        self.similarity = similarity
        self.topic_detector = topic_detector
        self.assembler = assembler
        self.verifier = verifier
        self.contamination_detector = contamination_detector
        self.config = config or ContextGuardConfig()
        self.metrics = metrics or TurnMetrics()
        self.generation_options = ModelOptions(
            max_tokens=self.config.generation.max_tokens,
            temperature=self.config.generation.temperature,
        )
        # Objects owning connections; started and closed with the controller
        self._resources = resources or []

    # ------------------------------------------------------------------
    # Construction & lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: ContextGuardConfig,
        llm: LLMProvider | None = None,
        kv: KeyValueStore | None = None,
        similarity_backend: SimilarityBackend | None = None,
        weather: WeatherProvider | None = None,
        search: SearchProvider | None = None,
        metrics: TurnMetrics | None = None,
    ) -> SessionController:
        """Wire real backends from config; any collaborator can be injected instead."""
        resources: list = []

        if llm is None:
            from .providers import build_provider

            name = config.model.provider
            llm = build_provider(name, config.providers.get(name, {}))
            resources.append(llm)

        if kv is None:
            if config.storage.backend == "memory":
                from .storage.memory import MemoryKeyValueStore

                kv = MemoryKeyValueStore()
            else:
                from .storage.redis_store import RedisKeyValueStore

                kv = RedisKeyValueStore(config.storage.redis_url)
                resources.append(kv)

        if similarity_backend is None:
            embedder = Embedder(config.similarity.embedding_model, config.similarity.vector_size)
            if config.similarity.backend == "memory":
                from .storage.memory import MemorySimilarityBackend

                similarity_backend = MemorySimilarityBackend(embedder)
            else:
                from .storage.sqlite import SQLiteSimilarityBackend

                similarity_backend = SQLiteSimilarityBackend(config.similarity.sqlite_path, embedder)
                resources.append(similarity_backend)

        if weather is None and config.weather.enabled:
            from .tools.weather import OpenWeatherProvider

            weather = OpenWeatherProvider(
                api_key_env=config.weather.api_key_env,
                use_onecall=config.weather.use_onecall,
                timeout=config.weather.timeout,
            )
            resources.append(weather)

        if search is None and config.search.enabled:
            from .tools.search import GooglePSEProvider

            search = GooglePSEProvider(
                api_key_env=config.search.api_key_env,
                engine_id_env=config.search.engine_id_env,
                timeout=config.search.timeout,
            )
            resources.append(search)

        judges = config.judges
        judge = judges.judge_temperature
        history = HistoryStore(
            kv, config.history.max_pairs, config.history.ttl_seconds, config.storage.key_prefix,
        )
        summaries = SummaryStore(
            kv, llm, config.history.ttl_seconds, config.storage.key_prefix,
            ModelOptions(judges.summary_max_tokens, judges.summary_temperature),
        )
        similarity = SimilarityIndex(similarity_backend, config.similarity.limit)
        assembler = ContextAssembler(
            llm,
            summaries,
            similarity,
            datetime_tool=DateTimeTool(config.assembler.timezone, config.assembler.locale),
            weather=weather,
            search=search,
            config=config.assembler,
            token_counter=create_token_counter(config.assembler.token_counter),
            default_location=config.weather.default_location,
            search_count=config.search.count,
            query_options=ModelOptions(judges.search_query_max_tokens, judge),
            search_summary_options=ModelOptions(judges.search_summary_max_tokens, judges.summary_temperature),
        )
        return cls(
            llm=llm,
            history=history,
            summaries=summaries,
            similarity=similarity,
            topic_detector=TopicShiftDetector(llm, ModelOptions(judges.topic_max_tokens, judge)),
            assembler=assembler,
            verifier=ResponseVerifier(llm, ModelOptions(judges.verification_max_tokens, judge)),
            contamination_detector=ContaminationDetector(
                llm, ModelOptions(judges.contamination_max_tokens, judge),
            ),
            config=config,
            metrics=metrics,
            resources=resources,
        )

    async def start(self) -> None:
        for resource in self._resources:
            connect = getattr(resource, "connect", None)
            if connect is not None:
                await connect()
        logger.info("Session controller started")

    async def aclose(self) -> None:
        for resource in reversed(self._resources):
            try:
                await resource.aclose()
            except Exception as e:
                logger.warning("Error closing %s: %s", type(resource).__name__, e)
        logger.info("Session controller stopped")

    async def __aenter__(self) -> SessionController:
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def _generate(self, prompt: str, result: TurnResult) -> str:
        messages = [
            {"role": "system", "content": self.config.generation.system_prompt},
            {"role": "user", "content": prompt},
        ]
        try:
            return (await self.llm.respond(messages, self.generation_options) or "").strip()
        except LLMProviderError as e:
            # No retry at this layer; the turn persists an empty answer
            logger.error("Generation failed for thread %s: %s", result.thread_id, e)
            result.generation_failed = True
            return ""

    async def _persist(self, result: TurnResult) -> None:
        thread_id = result.thread_id
        # Summary tracks what was generated, history tracks what was shown
        try:
            regenerated = await self.summaries.regenerate(thread_id, result.question, result.raw_response)
        except StoreError as e:
            logger.warning("Summary regeneration failed for thread %s: %s", thread_id, e)
            regenerated = None
        if regenerated is None:
            result.degraded.append("summary")

        try:
            await self.history.append(thread_id, result.question, result.final_response)
        except StoreError as e:
            logger.warning("History write failed for thread %s: %s", thread_id, e)
            result.degraded.append("history")

        try:
            await self.similarity.index(thread_id, result.turn_id, result.question, result.final_response)
        except StoreError as e:
            logger.warning("Similarity index write failed for thread %s: %s", thread_id, e)
            result.degraded.append("similarity")

        if result.reset:
            try:
                await self.summaries.clear(thread_id)
            except StoreError as e:
                logger.warning("Summary reset failed for thread %s: %s", thread_id, e)
                result.degraded.append("summary_reset")

    async def _run(self, result: TurnResult, topic: str) -> None:
        thread_id, message = result.thread_id, result.question
        thresholds = self.config.topic_shift

        result.states.append(TurnState.START)
        try:
            entries: list[Message] = await self.history.read(thread_id)
        except StoreError as e:
            logger.warning("History read failed for thread %s, treating as new: %s", thread_id, e)
            result.degraded.append("history")
            entries = []
        prev = (entries[-2].content, entries[-1].content) if len(entries) >= 2 else None

        result.states.append(TurnState.RESET_CHECK)
        if prev is not None:
            assessment = await self.topic_detector.detect(prev[0], prev[1], message)
            result.topic = assessment
            model_says_reset = thresholds.trust_model_reset and assessment.should_reset_context
            if model_says_reset or should_reset_context(
                assessment.similarity, 0,
                thresholds.similarity_threshold, thresholds.contamination_threshold,
            ):
                result.reset = True
                result.reset_reason = "topic_shift"
                logger.info(
                    "Topic shift on thread %s (similarity=%d), context reset",
                    thread_id, assessment.similarity,
                )

        result.states.append(TurnState.CONTEXT_ASSEMBLY)
        context = await self.assembler.assemble(thread_id, message, result.reset, topic)
        result.context = context
        result.degraded.extend(context.degraded)

        result.states.append(TurnState.GENERATION)
        result.raw_response = await self._generate(context.prompt, result)
        result.final_response = result.raw_response

        if not result.generation_failed:
            result.states.append(TurnState.VERIFICATION)
            verification = await self.verifier.verify(context, result.raw_response)
            result.verification = verification
            result.final_response = verification.verified_response

            result.states.append(TurnState.CONTAMINATION_CHECK)
            if prev is not None and not result.reset:
                contamination = await self.contamination_detector.detect(
                    prev[0], prev[1], message, result.final_response,
                )
                result.contamination = contamination
                contaminated = (
                    contamination.is_contaminated
                    or contamination.contamination_score > thresholds.contamination_threshold
                )
                if contaminated and contamination.cleaned_response:
                    result.final_response = contamination.cleaned_response
                    result.contamination_substituted = True
                if should_reset_context(
                    100, contamination.contamination_score,
                    thresholds.similarity_threshold, thresholds.contamination_threshold,
                ):
                    result.reset = True
                    result.reset_reason = "contamination"
                    logger.info(
                        "Contamination on thread %s (score=%d), summary will be reset",
                        thread_id, contamination.contamination_score,
                    )

        result.states.append(TurnState.PERSIST)
        await self._persist(result)

        display = result.final_response
        if display and result.contamination and self.config.response.annotate_contamination:
            display = add_contamination_warning(display, result.contamination.contamination_score)
        if display and result.verification and self.config.response.annotate_confidence:
            display = add_confidence_disclaimer(display, result.verification.confidence_score)
        result.display_response = display

        result.states.append(TurnState.DONE)

    async def run_turn(
        self,
        thread_id: str,
        message: str,
        turn_id: str | None = None,
        topic: str = "",
    ) -> TurnResult:
        """Run one turn and return its trace. Never raises."""
        result = TurnResult(thread_id=thread_id, question=message, turn_id=turn_id or uuid.uuid4().hex)
        started = time.perf_counter()
        try:
            await self._run(result, topic)
        except Exception as e:
            logger.exception("Turn failed on thread %s in state %s", thread_id, result.state.value)
            result.error = f"{type(e).__name__}: {e}"
            result.states.append(TurnState.ERROR)
        self.metrics.record_turn(result, (time.perf_counter() - started) * 1000)
        return result

    async def handle_turn(
        self,
        thread_id: str,
        message: str,
        turn_id: str | None = None,
        topic: str = "",
    ) -> str:
        """Entry point for the transport: the text to deliver for *message*."""
        result = await self.run_turn(thread_id, message, turn_id, topic)
        if result.state == TurnState.ERROR:
            return self.config.response.fallback_message
        text = result.display_response or result.final_response
        if not text.strip():
            return self.config.response.empty_response_message
        return text

    async def on_thread_deleted(self, thread_id: str) -> list[str]:
        """Cascade deletion across all three stores. Returns the steps that failed."""
        failed: list[str] = []
        steps = (
            ("history", self.history.clear),
            ("summary", self.summaries.delete),
            ("similarity", self.similarity.purge),
        )
        for name, step in steps:
            try:
                await step(thread_id)
            except Exception as e:
                logger.error("Failed to delete %s for thread %s: %s", name, thread_id, e)
                failed.append(name)
        self.metrics.record({"type": "thread_deleted", "thread_id": thread_id, "failed": failed})
        logger.info("Thread %s deleted", thread_id)
        return failed
