"""All dataclasses, Protocols, exceptions, and config types for context-guard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Messages & Turns
# ---------------------------------------------------------------------------

@dataclass
class Message:
    role: str  # "user" or "assistant"
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class ModelOptions:
    max_tokens: int = 2000
    temperature: float = 0.7


# ---------------------------------------------------------------------------
# Judgments (derived per turn, never stored)
# ---------------------------------------------------------------------------

@dataclass
class TopicAssessment:
    is_new_topic: bool = False
    similarity: int = 50  # 0..100, 100 = same topic
    analysis: str = ""
    should_reset_context: bool = False
    source: str = "llm"  # "llm" or "fallback"


@dataclass
class ContaminationAssessment:
    is_contaminated: bool = False
    contamination_score: int = 0  # 0..100, 100 = fully contaminated
    cleaned_response: str | None = None
    contaminated_segments: list[str] = field(default_factory=list)
    explanation: str = ""
    source: str = "llm"


@dataclass
class VerificationAssessment:
    is_reliable: bool = False
    confidence_score: int = 0  # 0..100
    verified_response: str = ""
    hallucinations: list[str] = field(default_factory=list)
    recommendation: str = ""
    source: str = "llm"


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------

@dataclass
class SimilarityEntry:
    """One indexed exchange. Immutable once written."""
    thread_id: str
    turn_id: str
    user_message: str
    bot_response: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    embedding: list[float] = field(default_factory=list)


@dataclass
class SimilarConversation:
    user_message: str
    bot_response: str
    distance: float = 0.0
    turn_id: str = ""
    timestamp: str = ""


@dataclass
class SimilarityHit:
    """Raw backend result: stored metadata plus distance to the query."""
    metadata: dict
    distance: float
    document: str = ""


# ---------------------------------------------------------------------------
# Auxiliary facts
# ---------------------------------------------------------------------------

@dataclass
class DailyForecast:
    date: str
    temp_min: float
    temp_max: float
    description: str


@dataclass
class WeatherReport:
    location: str
    description: str
    temperature: float
    feels_like: float
    humidity: float
    wind_speed: float
    sunrise: str  # "HH:MM" local
    sunset: str
    daily_forecast: list[DailyForecast] = field(default_factory=list)


@dataclass
class SearchResult:
    title: str
    snippet: str
    link: str = ""


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

SOURCE_NAMES = ("summary", "similar", "datetime", "weather", "search")


@dataclass
class AssembledContext:
    question: str = ""
    topic: str = ""
    prompt: str = ""
    sections: dict[str, str] = field(default_factory=dict)
    sources: dict[str, bool] = field(
        default_factory=lambda: {name: False for name in SOURCE_NAMES}
    )
    reset: bool = False
    search_query: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    budget_breakdown: dict[str, int] = field(default_factory=dict)
    total_tokens: int = 0
    degraded: list[str] = field(default_factory=list)

    def verification_payload(self) -> dict:
        """Structured view of the context handed to the response verifier."""
        return {
            "question": self.question,
            "topic": self.topic,
            "context": {name: text for name, text in self.sections.items() if text},
            "timestamp": self.timestamp.isoformat(),
        }


# ---------------------------------------------------------------------------
# Turn trace
# ---------------------------------------------------------------------------

class TurnState(str, Enum):
    START = "start"
    RESET_CHECK = "reset_check"
    CONTEXT_ASSEMBLY = "context_assembly"
    GENERATION = "generation"
    VERIFICATION = "verification"
    CONTAMINATION_CHECK = "contamination_check"
    PERSIST = "persist"
    DONE = "done"
    ERROR = "error"


@dataclass
class TurnResult:
    thread_id: str
    question: str
    turn_id: str = ""
    final_response: str = ""  # persisted to history and the similarity index
    display_response: str = ""  # final_response plus any confidence/contamination notice
    raw_response: str = ""
    reset: bool = False
    reset_reason: str = ""  # "topic_shift", "contamination", or ""
    topic: TopicAssessment | None = None
    verification: VerificationAssessment | None = None
    contamination: ContaminationAssessment | None = None
    context: AssembledContext | None = None
    states: list[TurnState] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)
    contamination_substituted: bool = False
    generation_failed: bool = False
    error: str = ""

    @property
    def state(self) -> TurnState:
        return self.states[-1] if self.states else TurnState.START


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMProviderError(Exception):
    def __init__(self, message: str, provider: str, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class StoreError(Exception):
    """Key-value or similarity backend unreachable or misbehaving."""


class ProviderError(Exception):
    """Weather/search provider failed (HTTP error, timeout, bad payload)."""

    def __init__(self, message: str, provider: str = "", status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LocationNotFound(ProviderError):
    pass


class ConfigurationError(Exception):
    """Required credentials or settings for a provider are missing."""


class ParseError(Exception):
    """Structured judgment output was not well-formed."""


# ---------------------------------------------------------------------------
# Collaborator Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class LLMProvider(Protocol):
    async def respond(self, messages: list[dict], options: ModelOptions) -> str: ...


@runtime_checkable
class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def expire(self, key: str, seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


@runtime_checkable
class SimilarityBackend(Protocol):
    async def upsert(self, entry_id: str, text: str, metadata: dict) -> None: ...

    async def query(self, where: dict, text: str, limit: int) -> list[SimilarityHit]: ...

    async def get_where(self, where: dict) -> list[SimilarityHit]: ...

    async def delete_where(self, where: dict) -> int: ...


@runtime_checkable
class WeatherProvider(Protocol):
    async def lookup(self, location: str) -> WeatherReport: ...


@runtime_checkable
class SearchProvider(Protocol):
    async def search(self, query: str, count: int) -> list[SearchResult]: ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant in a chat thread. Answer the user's question "
    "in the same language the user wrote in."
)

DEFAULT_FALLBACK_MESSAGE = "죄송합니다. 요청을 처리하는 중 오류가 발생했습니다. 잠시 후 다시 시도해주세요."
DEFAULT_EMPTY_RESPONSE_MESSAGE = "죄송합니다. 지금은 답변을 생성할 수 없습니다."


@dataclass
class ModelConfig:
    provider: str = "lmstudio"


@dataclass
class GenerationConfig:
    max_tokens: int = 2000
    temperature: float = 0.7
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


@dataclass
class JudgeConfig:
    """Token/temperature budgets for the model-as-classifier calls."""
    topic_max_tokens: int = 1000
    contamination_max_tokens: int = 2000
    verification_max_tokens: int = 2000
    summary_max_tokens: int = 500
    search_query_max_tokens: int = 100
    search_summary_max_tokens: int = 1000
    judge_temperature: float = 0.2
    summary_temperature: float = 0.3


@dataclass
class HistoryConfig:
    max_pairs: int = 10
    ttl_seconds: int = 86_400


@dataclass
class StorageConfig:
    backend: str = "redis"  # "redis" or "memory"
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "thread"


@dataclass
class SimilarityConfig:
    backend: str = "sqlite"  # "sqlite" or "memory"
    sqlite_path: str = ".context-guard/similarity.db"
    limit: int = 3
    embedding_model: str = "all-MiniLM-L6-v2"
    vector_size: int = 384


@dataclass
class TopicShiftConfig:
    similarity_threshold: int = 30
    contamination_threshold: int = 70
    trust_model_reset: bool = True  # honor the model's own shouldResetContext flag


@dataclass
class AssemblerConfig:
    section_max_tokens: int = 1500
    total_max_tokens: int = 6000
    token_counter: str = "estimate"  # "estimate" or "tiktoken"
    timezone: str = "Asia/Seoul"
    locale: str = "ko"


@dataclass
class WeatherConfig:
    enabled: bool = True
    api_key_env: str = "OPENWEATHER_API_KEY"
    default_location: str = "서울"
    use_onecall: bool = False
    timeout: float = 10.0


@dataclass
class SearchConfig:
    enabled: bool = True
    api_key_env: str = "GOOGLE_PSE_API_KEY"
    engine_id_env: str = "GOOGLE_PSE_ENGINE_ID"
    count: int = 5
    timeout: float = 10.0


@dataclass
class ResponseConfig:
    annotate_confidence: bool = False
    annotate_contamination: bool = False
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    empty_response_message: str = DEFAULT_EMPTY_RESPONSE_MESSAGE
    display_limit: int = 2000


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 5858


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = ""


@dataclass
class ContextGuardConfig:
    version: str = "0.1"
    model: ModelConfig = field(default_factory=ModelConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    judges: JudgeConfig = field(default_factory=JudgeConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    topic_shift: TopicShiftConfig = field(default_factory=TopicShiftConfig)
    assembler: AssemblerConfig = field(default_factory=AssemblerConfig)
    weather: WeatherConfig = field(default_factory=WeatherConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    response: ResponseConfig = field(default_factory=ResponseConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    providers: dict[str, dict] = field(default_factory=dict)
