"""Shared fixtures and fakes for context-guard tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from context_guard.config import load_config
from context_guard.controller import SessionController
from context_guard.core.assembler import SEARCH_QUERY_SYSTEM_PROMPT, SEARCH_SUMMARY_SYSTEM_PROMPT
from context_guard.core.contamination import CONTAMINATION_SYSTEM_PROMPT
from context_guard.core.embeddings import Embedder, hashed_embedding
from context_guard.core.summary import SUMMARY_SYSTEM_PROMPT
from context_guard.core.topic_shift import TOPIC_SYSTEM_PROMPT
from context_guard.core.verifier import VERIFIER_SYSTEM_PROMPT
from context_guard.storage.memory import MemoryKeyValueStore, MemorySimilarityBackend
from context_guard.types import StoreError, WeatherReport, SearchResult

TEST_VECTOR_SIZE = 256


def judgment(**fields) -> str:
    """Model output for a classifier call: a JSON object."""
    return json.dumps(fields, ensure_ascii=False)


SAME_TOPIC = judgment(isNewTopic=False, similarity=85, analysis="same topic", shouldResetContext=False)
NEW_TOPIC = judgment(isNewTopic=True, similarity=10, analysis="unrelated", shouldResetContext=True)
CLEAN = judgment(
    isContaminated=False, contaminationScore=5, contaminatedSegments=[],
    explanation="clean", cleanedResponse="",
)
RELIABLE = judgment(
    isReliable=True, confidenceScore=90, hallucinations=[], recommendation="", improvedResponse="",
)


class ScriptedLLM:
    """LLM stub that answers each call according to its system prompt.

    Roles: topic, contamination, verify, summary, search_query,
    search_summary, generate. A scripted response may be a string, an
    exception instance (raised), or a callable receiving the messages.
    """

    ROLES = {
        TOPIC_SYSTEM_PROMPT: "topic",
        CONTAMINATION_SYSTEM_PROMPT: "contamination",
        VERIFIER_SYSTEM_PROMPT: "verify",
        SUMMARY_SYSTEM_PROMPT: "summary",
        SEARCH_QUERY_SYSTEM_PROMPT: "search_query",
        SEARCH_SUMMARY_SYSTEM_PROMPT: "search_summary",
    }

    DEFAULTS = {
        "topic": SAME_TOPIC,
        "contamination": CLEAN,
        "verify": RELIABLE,
        "summary": "요약: 사용자가 날씨를 물었고 맑다는 답을 받았다.",
        "search_query": "search query",
        "search_summary": "search summary",
        "generate": "answer",
    }

    def __init__(self, **responses) -> None:
        self.responses = {**self.DEFAULTS, **responses}
        self.calls: list[dict] = []

    async def respond(self, messages: list[dict], options) -> str:
        system = messages[0]["content"] if messages and messages[0]["role"] == "system" else ""
        role = self.ROLES.get(system, "generate")
        self.calls.append({"role": role, "messages": messages, "options": options})
        response = self.responses.get(role, "")
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(messages)
        return response

    def calls_for(self, role: str) -> list[dict]:
        return [c for c in self.calls if c["role"] == role]

    def user_prompts(self, role: str) -> list[str]:
        return [c["messages"][-1]["content"] for c in self.calls_for(role)]


class FakeClock:
    """Monotonic clock for expiry tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sample_report(location: str = "서울") -> WeatherReport:
    return WeatherReport(
        location=location,
        description="맑음",
        temperature=18.5,
        feels_like=17.9,
        humidity=40,
        wind_speed=2.1,
        sunrise="06:40",
        sunset="17:55",
    )


class FakeWeather:
    def __init__(self, report: WeatherReport | None = None, error: Exception | None = None) -> None:
        self.report = report
        self.error = error
        self.calls: list[str] = []

    async def lookup(self, location: str) -> WeatherReport:
        self.calls.append(location)
        if self.error is not None:
            raise self.error
        return self.report or sample_report(location)


class FakeSearch:
    def __init__(self, results: list[SearchResult] | None = None, error: Exception | None = None) -> None:
        self.results = results if results is not None else [
            SearchResult(title="Result one", snippet="First snippet", link="https://example.com/1"),
            SearchResult(title="Result two", snippet="Second snippet", link="https://example.com/2"),
        ]
        self.error = error
        self.calls: list[tuple[str, int]] = []

    async def search(self, query: str, count: int) -> list[SearchResult]:
        self.calls.append((query, count))
        if self.error is not None:
            raise self.error
        return self.results


class FailingKV(MemoryKeyValueStore):
    """Memory store whose listed operations raise StoreError."""

    def __init__(self, fail_on: set[str] | None = None, clock=None) -> None:
        super().__init__(clock)
        self.fail_on = set(fail_on or ())

    def _check(self, op: str) -> None:
        if op in self.fail_on:
            raise StoreError(f"{op} unavailable")

    async def get(self, key):
        self._check("get")
        return await super().get(key)

    async def set(self, key, value):
        self._check("set")
        await super().set(key, value)

    async def expire(self, key, seconds):
        self._check("expire")
        await super().expire(key, seconds)

    async def delete(self, key):
        self._check("delete")
        await super().delete(key)


def make_embedder() -> Embedder:
    """Embedder pinned to hashed vectors so tests never load a model."""
    return Embedder(
        vector_size=TEST_VECTOR_SIZE,
        embed_fn=lambda texts: [hashed_embedding(t, TEST_VECTOR_SIZE) for t in texts],
    )


def config_dict_for(**overrides) -> dict:
    raw = {
        "storage": {"backend": "memory"},
        "similarity": {"backend": "memory", "vector_size": TEST_VECTOR_SIZE},
        "weather": {"enabled": False},
        "search": {"enabled": False},
    }
    for section, values in overrides.items():
        raw.setdefault(section, {}).update(values)
    return raw


def make_controller(
    llm: ScriptedLLM | None = None,
    *,
    kv=None,
    backend=None,
    weather=None,
    search=None,
    **config_overrides,
) -> SessionController:
    config = load_config(config_dict=config_dict_for(**config_overrides))
    return SessionController.from_config(
        config,
        llm=llm or ScriptedLLM(),
        kv=kv if kv is not None else MemoryKeyValueStore(),
        similarity_backend=backend or MemorySimilarityBackend(make_embedder()),
        weather=weather,
        search=search,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv(clock) -> MemoryKeyValueStore:
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture
def embedder() -> Embedder:
    return make_embedder()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def tmp_sqlite_db(tmp_path) -> Path:
    return tmp_path / "similarity.db"
