"""
Process-wide collaborators, built once at startup and passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import core.config as config
from core.config import (
    HealthConfig,
    OrchestratorConfig,
    RateLimitConfig,
    RetentionConfig,
    SearchPolicy,
)
from core.db import Database, init_db
from core.services.embeddings import EmbeddingGenerator, build_embedding_generator
from core.services.health import ProviderHealthTracker
from core.services.memory_search import MemoryRetriever
from core.services.memory_service import MemoryService
from core.services.memory_store import MemoryStore
from core.services.memory_writer import MemoryWriter
from core.services.orchestrator import ExternalLookup, FallbackOrchestrator
from core.services.rate_limiter import TokenBucketRateLimiter
from core.services.registry import ProviderRegistry, build_default_registry
from core.services.write_queue import MemoryWriteQueue


@dataclass
class Runtime:
    database: Database
    embedder: EmbeddingGenerator
    store: MemoryStore
    writer: MemoryWriter
    retriever: MemoryRetriever
    memory: MemoryService
    registry: ProviderRegistry
    health: ProviderHealthTracker
    limiter: TokenBucketRateLimiter
    write_queue: MemoryWriteQueue
    orchestrator: FallbackOrchestrator
    retention_config: RetentionConfig
    search_policy: SearchPolicy

    async def start(self) -> None:
        self.write_queue.start()

    async def close(self) -> None:
        await self.write_queue.shutdown()
        await self.registry.aclose()
        self.embedder.close()
        self.database.dispose()


def build_runtime(
    database_url: Optional[str] = None,
    registry: Optional[ProviderRegistry] = None,
    embedder: Optional[EmbeddingGenerator] = None,
    health_config: Optional[HealthConfig] = None,
    rate_limit_config: Optional[RateLimitConfig] = None,
    search_policy: Optional[SearchPolicy] = None,
    retention_config: Optional[RetentionConfig] = None,
    orchestrator_config: Optional[OrchestratorConfig] = None,
    external_lookup: Optional[ExternalLookup] = None,
) -> Runtime:
    """Wire every collaborator; unspecified pieces come from the environment."""
    health_config = health_config or config.load_health_config_from_env()
    rate_limit_config = rate_limit_config or config.load_rate_limit_config_from_env()
    search_policy = search_policy or config.load_search_policy_from_env()
    retention_config = retention_config or config.load_retention_config_from_env()
    orchestrator_config = orchestrator_config or config.load_orchestrator_config_from_env()

    database = init_db(database_url)
    embedder = embedder or build_embedding_generator()
    store = MemoryStore(database.SessionLocal)
    writer = MemoryWriter(store, embedder, retention_config)
    retriever = MemoryRetriever(store, embedder, search_policy, retention_config)
    registry = registry or build_default_registry(chains=orchestrator_config.fallback_chains)
    health = ProviderHealthTracker(health_config, providers=registry.names())
    limiter = TokenBucketRateLimiter(rate_limit_config)
    write_queue = MemoryWriteQueue(
        writer,
        workers=orchestrator_config.write_workers,
        maxsize=orchestrator_config.write_queue_size,
    )
    orchestrator = FallbackOrchestrator(
        registry=registry,
        health=health,
        limiter=limiter,
        retriever=retriever,
        write_queue=write_queue,
        config=orchestrator_config,
        search_policy=search_policy,
        external_lookup=external_lookup,
    )
    config.logger.info(
        "Runtime built",
        extra={"providers": registry.names(), "embedding_model": embedder.model_name},
    )
    return Runtime(
        database=database,
        embedder=embedder,
        store=store,
        writer=writer,
        retriever=retriever,
        memory=MemoryService(store, writer, retriever),
        registry=registry,
        health=health,
        limiter=limiter,
        write_queue=write_queue,
        orchestrator=orchestrator,
        retention_config=retention_config,
        search_policy=search_policy,
    )
