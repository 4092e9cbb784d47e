import os

os.environ.setdefault("EMBEDDING_PROVIDER", "hashing")
os.environ.setdefault("EMBEDDING_RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("EMBEDDING_RETRY_JITTER_SECONDS", "0")
os.environ.setdefault("MEMORY_SWEEP_INTERVAL_SECONDS", "0")

import asyncio

import pytest

from core.config import OrchestratorConfig, RateLimitConfig, RetentionConfig, SearchPolicy
from core.db import init_db
from core.providers.base import Completion, Provider, ProviderProfile
from core.services.embeddings import HashingEmbeddingGenerator
from core.services.health import ProviderHealthTracker
from core.services.memory_search import MemoryRetriever
from core.services.memory_store import MemoryStore
from core.services.memory_writer import MemoryWriter
from core.services.orchestrator import FallbackOrchestrator
from core.services.rate_limiter import TokenBucketRateLimiter
from core.services.registry import ProviderRegistry


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(Provider):
    def __init__(
        self,
        name,
        models=None,
        affinities=("personal", "instructional", "external_lookup", "generic"),
        priority=1,
        fail_with=None,
        delay=0.0,
        reply=None,
    ):
        super().__init__(
            ProviderProfile(
                name=name,
                models=tuple(models or (f"{name}-large", f"{name}-small")),
                affinities=tuple(affinities),
                priority=priority,
            )
        )
        self.fail_with = fail_with
        self.delay = delay
        self.reply = reply
        self.calls = []
        self.closed = False

    async def complete(self, messages, model):
        self.calls.append({"model": model, "messages": messages})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return Completion(content=self.reply or f"{self.name} says hi", model=model)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def database(tmp_path):
    db = init_db(f"sqlite:///{tmp_path / 'memory.sqlite'}")
    try:
        yield db
    finally:
        db.dispose()


@pytest.fixture
def store(database):
    return MemoryStore(database.SessionLocal)


@pytest.fixture
def embedder():
    return HashingEmbeddingGenerator(64)


@pytest.fixture
def retention_config():
    return RetentionConfig(default_retention_days=90, purge_grace_days=30, sweep_batch_limit=2)


@pytest.fixture
def writer(store, embedder, retention_config):
    return MemoryWriter(store, embedder, retention_config)


@pytest.fixture
def retriever(store, embedder, retention_config):
    return MemoryRetriever(store, embedder, SearchPolicy(), retention_config)


@pytest.fixture
def make_orchestrator():
    def _make(
        providers,
        chains=None,
        health=None,
        limiter=None,
        retriever=None,
        write_queue=None,
        attempt_timeout=1.0,
        external_lookup=None,
        memory_timeout=1.0,
    ):
        registry = ProviderRegistry(providers, chains)
        return FallbackOrchestrator(
            registry=registry,
            health=health or ProviderHealthTracker(providers=registry.names()),
            limiter=limiter or TokenBucketRateLimiter(RateLimitConfig()),
            retriever=retriever,
            write_queue=write_queue,
            config=OrchestratorConfig(
                attempt_timeout_seconds=attempt_timeout,
                external_lookup_timeout_seconds=0.2,
                memory_retrieval_timeout_seconds=memory_timeout,
            ),
            search_policy=SearchPolicy(),
            external_lookup=external_lookup,
        )

    return _make
