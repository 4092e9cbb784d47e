"""
Fallback orchestrator.

Per request: classify, retrieve memory context, select the candidate chain,
attempt candidates strictly in order, return the first success or a
degraded result. Successful exchanges are handed to the background write
queue after the result is built.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

import core.config as config
from core.config import OrchestratorConfig, SearchPolicy
from core.errors import AllProvidersExhausted, MemoryStoreUnavailable, ProviderError, RateLimited
from core.models import ChatResult, ScoredMemory
from core.services.classifier import ClassifiedQuery, QueryType, classify_query
from core.services.health import ProviderHealthTracker
from core.services.memory_search import MemoryRetriever, build_memory_query, format_memory_context
from core.services.rate_limiter import TokenBucketRateLimiter
from core.services.registry import ProviderRegistry
from core.services.write_queue import MemoryWriteJob, MemoryWriteQueue
from core.validators import validate_optional_text, validate_owner_id, validate_required_text

logger = config.logger

ExternalLookup = Callable[[str], Awaitable[Sequence[str]]]

OUTCOME_OK = "ok"
OUTCOME_FAILED = "failed"
OUTCOME_TIMEOUT = "timeout"
OUTCOME_SKIPPED_UNHEALTHY = "skipped_unhealthy"
OUTCOME_SKIPPED_RATE_LIMITED = "skipped_rate_limited"

ERROR_ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"

SYSTEM_PROMPTS = {
    QueryType.personal: (
        "You are a helpful assistant with memory of earlier conversations. "
        "Use the user's personal details from the conversation history when relevant. "
        "If you do not know something about the user, say so plainly."
    ),
    QueryType.instructional: (
        "You are a patient tutor. Explain concepts step by step with short examples "
        "and check understanding where it helps."
    ),
    QueryType.external_lookup: (
        "You are a helpful assistant. The question may depend on recent events; "
        "if you lack current information, say so instead of guessing."
    ),
    QueryType.generic: "You are a helpful AI assistant.",
}

DEGRADED_MESSAGES = {
    QueryType.external_lookup: (
        "I apologize, but I'm unable to access current information right now. "
        "Please try again later or check official sources for the latest updates."
    ),
    QueryType.personal: (
        "I'm having trouble reaching my assistant services right now, so I can't look at "
        "what you've shared before. Please try again in a moment."
    ),
    QueryType.instructional: (
        "I'm experiencing high demand right now and can't walk through this yet. "
        "Please try again in a few moments."
    ),
    QueryType.generic: (
        "I'm experiencing high demand right now. Please try again in a few moments, "
        "and I'll be happy to help!"
    ),
}


@dataclass(frozen=True)
class Candidate:
    provider: str
    model: str
    explicit: bool = False


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class FallbackOrchestrator:
    def __init__(
        self,
        registry: ProviderRegistry,
        health: ProviderHealthTracker,
        limiter: TokenBucketRateLimiter,
        retriever: Optional[MemoryRetriever] = None,
        write_queue: Optional[MemoryWriteQueue] = None,
        config: Optional[OrchestratorConfig] = None,
        search_policy: Optional[SearchPolicy] = None,
        external_lookup: Optional[ExternalLookup] = None,
    ):
        self.registry = registry
        self.health = health
        self.limiter = limiter
        self.retriever = retriever
        self.write_queue = write_queue
        self.config = config or OrchestratorConfig()
        self.search_policy = search_policy or (retriever.policy if retriever else SearchPolicy())
        self.external_lookup = external_lookup

    # ------------------------------------------------------------------
    # Chain selection
    # ------------------------------------------------------------------

    def _plan(
        self,
        owner_id: str,
        classified: ClassifiedQuery,
        explicit_provider: Optional[str],
        explicit_model: Optional[str],
    ) -> tuple[list[Candidate], list[dict]]:
        candidates: list[Candidate] = []
        skipped: list[dict] = []
        seen: set[tuple[str, str]] = set()

        def consider(name: str, model: str, explicit: bool) -> None:
            if (name, model) in seen:
                return
            seen.add((name, model))
            if not self.health.is_available(name):
                skipped.append({"provider": name, "model": model, "outcome": OUTCOME_SKIPPED_UNHEALTHY})
                return
            if not self.limiter.would_admit(owner_id, name):
                skipped.append({"provider": name, "model": model, "outcome": OUTCOME_SKIPPED_RATE_LIMITED})
                return
            candidates.append(Candidate(name, model, explicit))

        requested = self.registry.resolve_explicit(explicit_provider, explicit_model)
        if requested is not None:
            consider(requested[0], requested[1], True)

        query_type = classified.query_type.value
        for name in self.registry.chain_for(query_type):
            consider(name, self.registry.model_for(name, query_type), False)
        return candidates, skipped

    def select_chain(
        self,
        owner_id: str,
        classified: ClassifiedQuery,
        explicit_provider: Optional[str] = None,
        explicit_model: Optional[str] = None,
    ) -> list[Candidate]:
        """Ordered candidates for this request. Reads health and rate state without changing it."""
        candidates, _ = self._plan(owner_id, classified, explicit_provider, explicit_model)
        return candidates

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def _retrieve_memories(self, owner_id: str, classified: ClassifiedQuery) -> list[ScoredMemory]:
        if self.retriever is None or not classified.needs_memory:
            return []
        policy = self.search_policy
        try:
            query = build_memory_query(
                owner_id,
                classified.text[: config.MAX_QUERY_LENGTH],
                policy,
                limit=max(1, min(policy.context_limit, config.MAX_RESULT_LIMIT)),
            )
            return await asyncio.wait_for(
                asyncio.to_thread(self.retriever.search, query),
                timeout=self.config.memory_retrieval_timeout_seconds,
            )
        except MemoryStoreUnavailable:
            logger.warning("memory_context_unavailable", extra={"owner_id": owner_id})
            return []
        except asyncio.TimeoutError:
            logger.warning(
                "memory_context_timeout",
                extra={"owner_id": owner_id, "timeout": self.config.memory_retrieval_timeout_seconds},
            )
            return []

    async def _lookup(self, owner_id: str, classified: ClassifiedQuery) -> list[str]:
        if self.external_lookup is None or not classified.needs_external_lookup:
            return []
        try:
            snippets = await asyncio.wait_for(
                self.external_lookup(classified.text),
                timeout=self.config.external_lookup_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "external_lookup_failed",
                extra={"owner_id": owner_id, "error": type(exc).__name__},
            )
            return []
        return [str(snippet) for snippet in (snippets or []) if snippet]

    def build_messages(
        self,
        classified: ClassifiedQuery,
        memories: Sequence[ScoredMemory],
        lookup_snippets: Sequence[str] = (),
    ) -> list[dict]:
        system = SYSTEM_PROMPTS[classified.query_type]
        memory_block = format_memory_context(memories, personal=classified.query_type == QueryType.personal)
        if memory_block:
            system = f"{system}\n\n{memory_block}"
        if lookup_snippets:
            lines = "\n".join(f"- {snippet}" for snippet in lookup_snippets)
            system = f"{system}\n\nCurrent information:\n{lines}"
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": classified.text},
        ]

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    async def _attempt(self, owner_id: str, candidate: Candidate, messages: list[dict]):
        """Run one attempt; returns (completion or None, attempt log entry)."""
        name, model = candidate.provider, candidate.model
        entry = {"provider": name, "model": model}

        if not self.health.try_begin_attempt(name):
            entry["outcome"] = OUTCOME_SKIPPED_UNHEALTHY
            return None, entry
        try:
            self.limiter.acquire(owner_id, name)
        except RateLimited:
            self.health.release_attempt(name)
            entry["outcome"] = OUTCOME_SKIPPED_RATE_LIMITED
            return None, entry

        provider = self.registry.get(name)
        start = time.perf_counter()
        try:
            completion = await asyncio.wait_for(
                provider.complete(messages, model),
                timeout=self.config.attempt_timeout_seconds,
            )
        except asyncio.CancelledError:
            # Caller went away: neither success nor failure.
            self.health.release_attempt(name)
            raise
        except asyncio.TimeoutError:
            latency = _elapsed_ms(start)
            self.health.record_outcome(name, False, latency, error="timeout")
            entry.update(outcome=OUTCOME_TIMEOUT, latency_ms=round(latency, 2), error="timeout")
        except ProviderError as exc:
            latency = _elapsed_ms(start)
            self.health.record_outcome(name, False, latency, error=type(exc).__name__)
            entry.update(outcome=exc.outcome, latency_ms=round(latency, 2), error=type(exc).__name__)
        except Exception as exc:
            latency = _elapsed_ms(start)
            self.health.record_outcome(name, False, latency, error=type(exc).__name__)
            logger.warning(
                "provider_unexpected_error",
                extra={"provider": name, "model": model, "error": type(exc).__name__},
            )
            entry.update(outcome=OUTCOME_FAILED, latency_ms=round(latency, 2), error=type(exc).__name__)
        else:
            latency = _elapsed_ms(start)
            self.health.record_outcome(name, True, latency)
            entry.update(outcome=OUTCOME_OK, latency_ms=round(latency, 2))
            return completion, entry

        logger.info("provider_attempt_failed", extra={"owner_id": owner_id, **entry})
        return None, entry

    def _schedule_write(
        self,
        owner_id: str,
        user_text: str,
        assistant_text: str,
        conversation_id: Optional[str],
    ) -> None:
        if self.write_queue is None:
            return
        try:
            self.write_queue.submit(
                MemoryWriteJob(
                    owner_id=owner_id,
                    user_text=user_text,
                    assistant_text=assistant_text,
                    conversation_id=conversation_id,
                )
            )
        except Exception as exc:
            logger.warning(
                "memory_write_schedule_failed",
                extra={"owner_id": owner_id, "error": type(exc).__name__},
            )

    async def chat(
        self,
        owner_id: str,
        text: str,
        explicit_provider: Optional[str] = None,
        explicit_model: Optional[str] = None,
        conversation_id: Optional[str] = None,
        history_summary: Optional[str] = None,
    ) -> ChatResult:
        validate_owner_id(owner_id)
        validate_required_text(text, "text", config.MAX_TEXT_LENGTH)
        validate_optional_text(conversation_id, "conversation_id", config.MAX_SHORT_TEXT_LENGTH)
        validate_optional_text(history_summary, "history_summary", config.MAX_TEXT_LENGTH)
        start = time.perf_counter()

        classified = classify_query(text.strip(), history_summary)
        # Validates explicit provider/model before any I/O.
        self.registry.resolve_explicit(explicit_provider, explicit_model)

        memories = await self._retrieve_memories(owner_id, classified)
        snippets = await self._lookup(owner_id, classified)
        messages = self.build_messages(classified, memories, snippets)

        candidates, attempts = self._plan(owner_id, classified, explicit_provider, explicit_model)
        for index, candidate in enumerate(candidates):
            completion, entry = await self._attempt(owner_id, candidate, messages)
            attempts.append(entry)
            if completion is None:
                continue
            result = ChatResult(
                content=completion.content,
                provider_used=candidate.provider,
                model_used=candidate.model,
                query_type=classified.query_type.value,
                memories_used=len(memories),
                latency_ms=_elapsed_ms(start),
                fallback_used=index > 0 or any(a["outcome"] != OUTCOME_OK for a in attempts[:-1]),
                attempts=attempts,
            )
            logger.info(
                "chat_completed",
                extra={
                    "owner_id": owner_id,
                    "provider": candidate.provider,
                    "model": candidate.model,
                    "query_type": result.query_type,
                    "memories_used": result.memories_used,
                    "fallback_used": result.fallback_used,
                },
            )
            self._schedule_write(owner_id, classified.text, completion.content, conversation_id)
            return result

        return self._degraded(owner_id, classified, memories, attempts, start)

    def _degraded(
        self,
        owner_id: str,
        classified: ClassifiedQuery,
        memories: Sequence[ScoredMemory],
        attempts: list[dict],
        start: float,
    ) -> ChatResult:
        exhausted = AllProvidersExhausted(attempts)
        logger.warning(
            "chat_degraded",
            extra={
                "owner_id": owner_id,
                "query_type": classified.query_type.value,
                "attempts": len(attempts),
                "error": str(exhausted),
            },
        )
        return ChatResult(
            content=DEGRADED_MESSAGES[classified.query_type],
            provider_used=None,
            model_used=None,
            query_type=classified.query_type.value,
            memories_used=len(memories),
            status="degraded",
            error_code=ERROR_ALL_PROVIDERS_EXHAUSTED,
            latency_ms=_elapsed_ms(start),
            fallback_used=bool(attempts),
            attempts=exhausted.attempts,
        )

    def provider_health(self) -> dict:
        """Diagnostic view: {provider: {available, avg_latency_ms, failure_rate, ...}}."""
        return {name: self.health.snapshot(name) for name in self.registry.names()}
