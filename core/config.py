"""
Shared configuration for the MemoryRouter core.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("memoryrouter")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_json(env_name: str) -> Optional[dict]:
    value = os.environ.get(env_name)
    if not value or not value.strip():
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        logger.warning(f"{env_name} is not valid JSON; ignoring")
        return None
    if not isinstance(parsed, dict):
        logger.warning(f"{env_name} must be a JSON object; ignoring")
        return None
    return parsed


# Database settings
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./memoryrouter.db")

# Embedding settings
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "hashing").strip().lower()
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_EMBEDDINGS_URL = os.environ.get(
    "OPENAI_EMBEDDINGS_URL", "https://api.openai.com/v1/embeddings"
)
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIM = _get_int("EMBEDDING_DIM", 1536 if EMBEDDING_PROVIDER == "openai" else 256)

# Embedding retry/backoff
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 2)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.5)
EMBEDDING_RETRY_JITTER_SECONDS = _get_float("EMBEDDING_RETRY_JITTER_SECONDS", 0.25)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("MEMORYROUTER_MAX_RESULT_LIMIT", 100)
MAX_QUERY_LENGTH = _get_int("MEMORYROUTER_MAX_QUERY_LENGTH", 4000)
MAX_TEXT_LENGTH = _get_int("MEMORYROUTER_MAX_TEXT_LENGTH", 16000)
MAX_SHORT_TEXT_LENGTH = _get_int("MEMORYROUTER_MAX_SHORT_TEXT_LENGTH", 255)
MAX_TAG_ITEMS = _get_int("MEMORYROUTER_MAX_TAG_ITEMS", 50)
MAX_TAG_LENGTH = _get_int("MEMORYROUTER_MAX_TAG_LENGTH", 100)
MAX_EMBEDDING_TEXT_LENGTH = _get_int("MEMORYROUTER_MAX_EMBEDDING_TEXT_LENGTH", 8000)

# Provider credentials
PROVIDER_API_KEYS = {
    "groq": os.environ.get("GROQ_API_KEY"),
    "gemini": os.environ.get("GEMINI_API_KEY"),
    "cerebras": os.environ.get("CEREBRAS_API_KEY"),
    "mistral": os.environ.get("MISTRAL_API_KEY"),
    "openrouter": os.environ.get("OPENROUTER_API_KEY"),
    "cohere": os.environ.get("COHERE_API_KEY"),
}

SEARCH_MODES = ("vector", "lexical", "hybrid")
PRIORITIES = ("low", "medium", "high", "critical")
RETENTIONS = ("session", "short_term", "long_term", "permanent")


@dataclass(frozen=True)
class HealthConfig:
    failure_threshold: int = 3
    failure_window_seconds: float = 60.0
    cooldown_seconds: float = 30.0
    outcome_window: int = 50
    latency_alpha: float = 0.3


@dataclass(frozen=True)
class RateLimitRule:
    capacity: float
    refill_per_second: float


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = True
    default: RateLimitRule = field(default_factory=lambda: RateLimitRule(120, 2.0))
    overrides: dict = field(default_factory=dict)
    max_buckets: int = 10000


@dataclass(frozen=True)
class SearchPolicy:
    """Central defaults for every memory search caller."""

    limit: int = 5
    min_similarity: float = 0.1
    mode: str = "hybrid"
    context_limit: int = 5


@dataclass(frozen=True)
class RetentionConfig:
    default_retention_days: int = 90
    sweep_interval_seconds: int = 900
    purge_grace_days: int = 30
    sweep_batch_limit: int = 500


@dataclass(frozen=True)
class OrchestratorConfig:
    attempt_timeout_seconds: float = 20.0
    fallback_chains: dict = field(default_factory=dict)
    write_workers: int = 2
    write_queue_size: int = 1000
    external_lookup_timeout_seconds: float = 5.0
    memory_retrieval_timeout_seconds: float = 5.0


def load_health_config_from_env() -> HealthConfig:
    return HealthConfig(
        failure_threshold=max(1, _get_int("HEALTH_FAILURE_THRESHOLD", 3)),
        failure_window_seconds=max(1.0, _get_float("HEALTH_FAILURE_WINDOW_SECONDS", 60.0)),
        cooldown_seconds=max(0.0, _get_float("HEALTH_COOLDOWN_SECONDS", 30.0)),
        outcome_window=max(1, _get_int("HEALTH_OUTCOME_WINDOW", 50)),
        latency_alpha=min(1.0, max(0.01, _get_float("HEALTH_LATENCY_ALPHA", 0.3))),
    )


def _parse_rate_limit_overrides(raw: Optional[dict]) -> dict:
    overrides: dict[str, RateLimitRule] = {}
    for provider, values in (raw or {}).items():
        if not isinstance(values, dict):
            logger.warning(f"Ignoring rate limit override for {provider}: expected object")
            continue
        try:
            capacity = float(values["capacity"])
            refill = float(values["refill_per_second"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Ignoring malformed rate limit override for {provider}")
            continue
        if capacity <= 0 or refill < 0:
            logger.warning(f"Ignoring non-positive rate limit override for {provider}")
            continue
        overrides[provider.strip().lower()] = RateLimitRule(capacity, refill)
    return overrides


def load_rate_limit_config_from_env() -> RateLimitConfig:
    return RateLimitConfig(
        enabled=_get_bool("RATE_LIMIT_ENABLED", True),
        default=RateLimitRule(
            capacity=max(1.0, _get_float("RATE_LIMIT_CAPACITY", 120.0)),
            refill_per_second=max(0.0, _get_float("RATE_LIMIT_REFILL_PER_SECOND", 2.0)),
        ),
        overrides=_parse_rate_limit_overrides(_get_json("RATE_LIMIT_OVERRIDES")),
        max_buckets=max(1, _get_int("RATE_LIMIT_MAX_BUCKETS", 10000)),
    )


def load_search_policy_from_env() -> SearchPolicy:
    mode = os.environ.get("MEMORY_SEARCH_MODE", "hybrid").strip().lower()
    if mode not in SEARCH_MODES:
        logger.warning(f"Unknown MEMORY_SEARCH_MODE '{mode}'; using hybrid")
        mode = "hybrid"
    return SearchPolicy(
        limit=max(1, min(_get_int("MEMORY_SEARCH_LIMIT", 5), MAX_RESULT_LIMIT)),
        min_similarity=min(1.0, max(0.0, _get_float("MEMORY_MIN_SIMILARITY", 0.1))),
        mode=mode,
        context_limit=max(0, _get_int("MEMORY_CONTEXT_LIMIT", 5)),
    )


def load_retention_config_from_env() -> RetentionConfig:
    return RetentionConfig(
        default_retention_days=max(1, _get_int("MEMORY_RETENTION_DAYS", 90)),
        sweep_interval_seconds=_get_int("MEMORY_SWEEP_INTERVAL_SECONDS", 900),
        purge_grace_days=max(0, _get_int("MEMORY_PURGE_GRACE_DAYS", 30)),
        sweep_batch_limit=max(1, _get_int("MEMORY_SWEEP_BATCH_LIMIT", 500)),
    )


def load_orchestrator_config_from_env() -> OrchestratorConfig:
    chains: dict[str, list[str]] = {}
    for query_type, providers in (_get_json("PROVIDER_FALLBACK_CHAINS") or {}).items():
        if isinstance(providers, list) and all(isinstance(p, str) for p in providers):
            chains[query_type.strip().lower()] = [p.strip().lower() for p in providers]
        else:
            logger.warning(f"Ignoring fallback chain for {query_type}: expected list of names")
    return OrchestratorConfig(
        attempt_timeout_seconds=max(0.1, _get_float("PROVIDER_ATTEMPT_TIMEOUT_SECONDS", 20.0)),
        fallback_chains=chains,
        write_workers=max(1, _get_int("MEMORY_WRITE_WORKERS", 2)),
        write_queue_size=max(1, _get_int("MEMORY_WRITE_QUEUE_SIZE", 1000)),
        external_lookup_timeout_seconds=max(
            0.1, _get_float("EXTERNAL_LOOKUP_TIMEOUT_SECONDS", 5.0)
        ),
        memory_retrieval_timeout_seconds=max(
            0.1, _get_float("MEMORY_RETRIEVAL_TIMEOUT_SECONDS", 5.0)
        ),
    )


def validate_and_prepare_config() -> None:
    """Validate configuration at startup."""
    errors = []
    if not DATABASE_URL:
        errors.append("DATABASE_URL must not be empty")
    if EMBEDDING_PROVIDER not in {"openai", "hashing", "none"}:
        errors.append("EMBEDDING_PROVIDER must be 'openai', 'hashing', or 'none'")
    if EMBEDDING_PROVIDER == "openai" and not OPENAI_API_KEY:
        errors.append("EMBEDDING_PROVIDER=openai requires OPENAI_API_KEY")
    if EMBEDDING_DIM <= 0:
        errors.append("EMBEDDING_DIM must be positive")

    if not any(PROVIDER_API_KEYS.values()):
        logger.warning(
            "No provider API keys configured; every chat request will return a degraded response."
        )

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
