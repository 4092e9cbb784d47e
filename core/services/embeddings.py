"""
Embedding generators and vector helpers.
"""

from __future__ import annotations

import hashlib
import random
import re
import threading
import time
from typing import Callable, List, Optional, Sequence

import httpx
import numpy as np

import core.config as config
from core.errors import EmbeddingUnavailable
from core.validators import validate_embedding_text

logger = config.logger

_TOKEN_RE = re.compile(r"[a-z0-9']+")


class EmbeddingCircuitBreaker:
    """Stops calling the embedding API for a cooldown after repeated failures.

    Time comes from an injectable monotonic clock.
    """

    def __init__(
        self,
        failure_threshold: int,
        cooldown_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_seconds = max(1.0, float(cooldown_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._last_error: Optional[str] = None

    def _remaining(self, now: float) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self._opened_at + self.cooldown_seconds - now)

    def is_open(self) -> bool:
        with self._lock:
            return self._remaining(self._clock()) > 0.0

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._failures += 1
            self._last_error = error
            if self._failures >= self.failure_threshold:
                self._opened_at = self._clock()

    def status(self) -> dict:
        with self._lock:
            remaining = self._remaining(self._clock())
            return {
                "open": remaining > 0.0,
                "consecutive_failures": self._failures,
                "cooldown_remaining_seconds": round(remaining, 3),
                "last_error": self._last_error,
            }


class EmbeddingGenerator:
    """Turns text into a vector of ``dimension`` floats or raises EmbeddingUnavailable."""

    model_name = "unknown"

    def __init__(self, dimension: int):
        self.dimension = dimension

    def embed(self, text: str) -> List[float]:
        raise NotImplementedError

    def status(self) -> dict:
        return {"model": self.model_name, "dimension": self.dimension}

    def close(self) -> None:
        pass


class DisabledEmbeddingGenerator(EmbeddingGenerator):
    model_name = "none"

    def embed(self, text: str) -> List[float]:
        raise EmbeddingUnavailable("embedding provider disabled")


class HashingEmbeddingGenerator(EmbeddingGenerator):
    """Deterministic signed feature hashing over word unigrams and bigrams."""

    model_name = "hashing-v1"

    def embed(self, text: str) -> List[float]:
        validate_embedding_text(text)
        tokens = _TOKEN_RE.findall(text.lower())
        features = tokens + [f"{a} {b}" for a, b in zip(tokens, tokens[1:])]
        vector = np.zeros(self.dimension, dtype=np.float64)
        for feature in features:
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            index = value % self.dimension
            sign = 1.0 if (value >> 63) & 1 else -1.0
            vector[index] += sign
        norm = np.linalg.norm(vector)
        if norm == 0:
            raise EmbeddingUnavailable("text produced no embeddable tokens")
        return (vector / norm).tolist()


class OpenAIEmbeddingGenerator(EmbeddingGenerator):
    def __init__(
        self,
        api_key: str,
        model: str = config.EMBEDDING_MODEL,
        dimension: int = config.EMBEDDING_DIM,
        url: str = config.OPENAI_EMBEDDINGS_URL,
        breaker: Optional[EmbeddingCircuitBreaker] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        super().__init__(dimension)
        self.model_name = model
        self._url = url
        self.breaker = breaker or EmbeddingCircuitBreaker(
            failure_threshold=config.EMBEDDING_FAILURE_THRESHOLD,
            cooldown_seconds=config.EMBEDDING_COOLDOWN_SECONDS,
        )
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(config.EMBEDDING_TIMEOUT_SECONDS),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    def _unavailable(self, detail: str) -> None:
        logger.warning("embedding_unavailable", extra={"detail": detail, "model": self.model_name})
        raise EmbeddingUnavailable("embedding provider unavailable")

    def _sleep_backoff(self, attempt: int) -> None:
        base = config.EMBEDDING_RETRY_BACKOFF_SECONDS * (2 ** attempt)
        jitter = random.uniform(0, config.EMBEDDING_RETRY_JITTER_SECONDS)
        time.sleep(base + jitter)

    def embed(self, text: str) -> List[float]:
        validate_embedding_text(text)
        if self.breaker.is_open():
            self._unavailable("circuit breaker open")

        for attempt in range(config.EMBEDDING_RETRY_MAX + 1):
            try:
                response = self._client.post(
                    self._url,
                    json={"model": self.model_name, "input": text},
                )
            except httpx.RequestError as exc:
                if attempt >= config.EMBEDDING_RETRY_MAX:
                    self.breaker.record_failure("request error")
                    self._unavailable(type(exc).__name__)
                self._sleep_backoff(attempt)
                continue

            if response.status_code in {429, 500, 502, 503, 504}:
                if attempt >= config.EMBEDDING_RETRY_MAX:
                    self.breaker.record_failure(f"status {response.status_code}")
                    self._unavailable(f"status {response.status_code}")
                self._sleep_backoff(attempt)
                continue
            if response.status_code >= 400:
                self.breaker.record_failure(f"status {response.status_code}")
                self._unavailable(f"status {response.status_code}")

            try:
                vector = response.json()["data"][0]["embedding"]
            except (ValueError, KeyError, IndexError, TypeError):
                self.breaker.record_failure("malformed response")
                self._unavailable("malformed response")
            if len(vector) != self.dimension:
                self.breaker.record_failure("dimension mismatch")
                self._unavailable(f"expected {self.dimension} dims, got {len(vector)}")
            self.breaker.record_success()
            return [float(v) for v in vector]

        self._unavailable("retries exhausted")

    def status(self) -> dict:
        payload = super().status()
        payload["circuit_breaker"] = self.breaker.status()
        return payload

    def close(self) -> None:
        self._client.close()


def build_embedding_generator(provider: Optional[str] = None) -> EmbeddingGenerator:
    provider = (provider or config.EMBEDDING_PROVIDER).lower()
    if provider == "openai":
        if not config.OPENAI_API_KEY:
            raise RuntimeError("EMBEDDING_PROVIDER=openai requires OPENAI_API_KEY")
        return OpenAIEmbeddingGenerator(api_key=config.OPENAI_API_KEY)
    if provider == "hashing":
        return HashingEmbeddingGenerator(config.EMBEDDING_DIM)
    if provider == "none":
        return DisabledEmbeddingGenerator(config.EMBEDDING_DIM)
    raise RuntimeError(f"Unknown EMBEDDING_PROVIDER '{provider}'")


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> Optional[float]:
    """Cosine similarity clipped to [0, 1]; None when either side is unusable."""
    if a is None or b is None:
        return None
    if len(a) != len(b) or len(a) == 0:
        return None
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return None
    return float(np.clip(np.dot(va, vb) / denom, 0.0, 1.0))
