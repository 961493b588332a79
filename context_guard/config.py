"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .types import (
    AssemblerConfig,
    ContextGuardConfig,
    GenerationConfig,
    HistoryConfig,
    JudgeConfig,
    LoggingConfig,
    ModelConfig,
    ResponseConfig,
    SearchConfig,
    ServerConfig,
    SimilarityConfig,
    StorageConfig,
    TopicShiftConfig,
    WeatherConfig,
)

CONFIG_FILENAMES = [
    "context-guard.yaml",
    "context-guard.yml",
    "context-guard.json",
]

DEFAULT_PROVIDERS: dict[str, dict] = {
    "lmstudio": {
        "type": "generic_openai",
        "base_url": "http://127.0.0.1:1234/v1",
        "model": "local-model",
    },
}


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    return value if isinstance(value, dict) else {}


def _build_config(raw: dict[str, Any]) -> ContextGuardConfig:
    """Build a ContextGuardConfig from a raw dict."""
    model_raw = _section(raw, "model")
    model = ModelConfig(provider=model_raw.get("provider", "lmstudio"))

    gen_raw = _section(raw, "generation")
    generation = GenerationConfig(
        max_tokens=gen_raw.get("max_tokens", 2000),
        temperature=gen_raw.get("temperature", 0.7),
    )
    if gen_raw.get("system_prompt"):
        generation.system_prompt = gen_raw["system_prompt"]

    judges_raw = _section(raw, "judges")
    judges = JudgeConfig(
        topic_max_tokens=judges_raw.get("topic_max_tokens", 1000),
        contamination_max_tokens=judges_raw.get("contamination_max_tokens", 2000),
        verification_max_tokens=judges_raw.get("verification_max_tokens", 2000),
        summary_max_tokens=judges_raw.get("summary_max_tokens", 500),
        search_query_max_tokens=judges_raw.get("search_query_max_tokens", 100),
        search_summary_max_tokens=judges_raw.get("search_summary_max_tokens", 1000),
        judge_temperature=judges_raw.get("judge_temperature", 0.2),
        summary_temperature=judges_raw.get("summary_temperature", 0.3),
    )

    history_raw = _section(raw, "history")
    history = HistoryConfig(
        max_pairs=history_raw.get("max_pairs", 10),
        ttl_seconds=history_raw.get("ttl_seconds", 86_400),
    )

    storage_raw = _section(raw, "storage")
    storage = StorageConfig(
        backend=storage_raw.get("backend", "redis"),
        redis_url=storage_raw.get("redis_url", "redis://localhost:6379"),
        key_prefix=storage_raw.get("key_prefix", "thread"),
    )

    sim_raw = _section(raw, "similarity")
    similarity = SimilarityConfig(
        backend=sim_raw.get("backend", "sqlite"),
        sqlite_path=sim_raw.get("sqlite_path", ".context-guard/similarity.db"),
        limit=sim_raw.get("limit", 3),
        embedding_model=sim_raw.get("embedding_model", "all-MiniLM-L6-v2"),
        vector_size=sim_raw.get("vector_size", 384),
    )

    topic_raw = _section(raw, "topic_shift")
    topic_shift = TopicShiftConfig(
        similarity_threshold=topic_raw.get("similarity_threshold", 30),
        contamination_threshold=topic_raw.get("contamination_threshold", 70),
        trust_model_reset=topic_raw.get("trust_model_reset", True),
    )

    asm_raw = _section(raw, "assembler")
    assembler = AssemblerConfig(
        section_max_tokens=asm_raw.get("section_max_tokens", 1500),
        total_max_tokens=asm_raw.get("total_max_tokens", 6000),
        token_counter=asm_raw.get("token_counter", "estimate"),
        timezone=asm_raw.get("timezone", "Asia/Seoul"),
        locale=asm_raw.get("locale", "ko"),
    )

    weather_raw = _section(raw, "weather")
    weather = WeatherConfig(
        enabled=weather_raw.get("enabled", True),
        api_key_env=weather_raw.get("api_key_env", "OPENWEATHER_API_KEY"),
        default_location=weather_raw.get("default_location", "서울"),
        use_onecall=weather_raw.get("use_onecall", False),
        timeout=weather_raw.get("timeout", 10.0),
    )

    search_raw = _section(raw, "search")
    search = SearchConfig(
        enabled=search_raw.get("enabled", True),
        api_key_env=search_raw.get("api_key_env", "GOOGLE_PSE_API_KEY"),
        engine_id_env=search_raw.get("engine_id_env", "GOOGLE_PSE_ENGINE_ID"),
        count=search_raw.get("count", 5),
        timeout=search_raw.get("timeout", 10.0),
    )

    resp_raw = _section(raw, "response")
    response = ResponseConfig(
        annotate_confidence=resp_raw.get("annotate_confidence", False),
        annotate_contamination=resp_raw.get("annotate_contamination", False),
        display_limit=resp_raw.get("display_limit", 2000),
    )
    if resp_raw.get("fallback_message"):
        response.fallback_message = resp_raw["fallback_message"]
    if resp_raw.get("empty_response_message"):
        response.empty_response_message = resp_raw["empty_response_message"]

    server_raw = _section(raw, "server")
    server = ServerConfig(
        host=server_raw.get("host", "127.0.0.1"),
        port=server_raw.get("port", 5858),
    )

    logging_raw = _section(raw, "logging")
    logging_config = LoggingConfig(
        level=logging_raw.get("level", "INFO"),
        file=logging_raw.get("file", ""),
    )

    providers = dict(DEFAULT_PROVIDERS)
    providers.update(_section(raw, "providers"))

    return ContextGuardConfig(
        version=str(raw.get("version", "0.1")),
        model=model,
        generation=generation,
        judges=judges,
        history=history,
        storage=storage,
        similarity=similarity,
        topic_shift=topic_shift,
        assembler=assembler,
        weather=weather,
        search=search,
        response=response,
        server=server,
        logging=logging_config,
        providers=providers,
    )


def validate_config(config: ContextGuardConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.history.max_pairs < 1:
        errors.append("history.max_pairs must be >= 1")

    if config.history.ttl_seconds < 1:
        errors.append("history.ttl_seconds must be >= 1")

    if config.storage.backend not in ("redis", "memory"):
        errors.append(f"Unknown storage backend '{config.storage.backend}'")

    if config.similarity.backend not in ("sqlite", "memory"):
        errors.append(f"Unknown similarity backend '{config.similarity.backend}'")

    if not 1 <= config.similarity.limit <= 5:
        errors.append(f"similarity.limit ({config.similarity.limit}) must be between 1 and 5")

    if config.similarity.vector_size < 1:
        errors.append("similarity.vector_size must be >= 1")

    for name in ("similarity_threshold", "contamination_threshold"):
        value = getattr(config.topic_shift, name)
        if not 0 <= value <= 100:
            errors.append(f"topic_shift.{name} ({value}) must be between 0 and 100")

    if config.assembler.token_counter not in ("estimate", "tiktoken"):
        errors.append(f"Unknown token counter '{config.assembler.token_counter}'")

    if config.assembler.section_max_tokens > config.assembler.total_max_tokens:
        errors.append(
            f"assembler.section_max_tokens ({config.assembler.section_max_tokens}) must be <= "
            f"total_max_tokens ({config.assembler.total_max_tokens})"
        )

    if config.model.provider not in config.providers:
        errors.append(
            f"Model provider '{config.model.provider}' not found in providers section"
        )

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> ContextGuardConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
