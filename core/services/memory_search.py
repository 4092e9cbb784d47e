"""
Hybrid memory retrieval.

similarity = max(vector score, lexical score)
rank       = similarity * 0.7 + importance * 0.2 + recency * 0.1

Candidates under min_similarity are dropped before ranking. Ties in rank go
to the newest record. Searching never modifies records.
"""

from __future__ import annotations

import heapq
import re
from datetime import datetime, timedelta
from typing import Optional, Sequence

import core.config as config
from core.config import RetentionConfig, SearchPolicy
from core.errors import EmbeddingUnavailable
from core.models import MemoryQuery, MemoryRecord, ScoredMemory, as_utc, utc_now
from core.services.embeddings import EmbeddingGenerator, cosine_similarity
from core.services.memory_store import MemoryStore
from core.validators import (
    validate_limit,
    validate_owner_id,
    validate_required_text,
    validate_search_mode,
    validate_unit_interval,
)

logger = config.logger

SIMILARITY_WEIGHT = 0.7
IMPORTANCE_WEIGHT = 0.2
RECENCY_WEIGHT = 0.1

EXACT_MATCH_SCORE = 1.0
CONTAINMENT_SCORE = 0.9
TOKEN_OVERLAP_SCALE = 0.8
PREFIX_MATCH_MIN_LENGTH = 4
# Best lexical matches kept per search; every matching row is scored first.
LEXICAL_CANDIDATE_LIMIT = 500
LEXICAL_PAGE_SIZE = 500

_WORD_RE = re.compile(r"[a-z0-9']+")


def normalize_text(text: str) -> str:
    return " ".join(_WORD_RE.findall((text or "").lower()))


STOPWORDS = frozenset({
    "a", "an", "the", "is", "are", "was", "were", "be", "to", "of", "and", "or",
    "in", "on", "at", "for", "it", "do", "does", "did", "what", "you", "can",
    "tell", "please", "with", "this", "that",
})


def tokenize(text: str) -> list[str]:
    return [token.strip("'") for token in _WORD_RE.findall((text or "").lower()) if token.strip("'")]


def query_tokens(text: str) -> list[str]:
    """Content-bearing query tokens; falls back to every token for all-stopword queries."""
    tokens = tokenize(text)
    meaningful = [token for token in tokens if token not in STOPWORDS]
    return meaningful or tokens


def _tokens_match(query_token: str, content_token: str) -> bool:
    if query_token == content_token:
        return True
    if len(query_token) >= PREFIX_MATCH_MIN_LENGTH and len(content_token) >= PREFIX_MATCH_MIN_LENGTH:
        return content_token.startswith(query_token) or query_token.startswith(content_token)
    return False


def lexical_score(query: str, content: str) -> float:
    """Score in [0, 1]: exact match, containment, then scaled token overlap."""
    normalized_query = normalize_text(query)
    normalized_content = normalize_text(content)
    if not normalized_query or not normalized_content:
        return 0.0
    if normalized_query == normalized_content:
        return EXACT_MATCH_SCORE
    if f" {normalized_query} " in f" {normalized_content} ":
        return CONTAINMENT_SCORE

    tokens = query_tokens(query)
    content_tokens = set(tokenize(content))
    if not tokens:
        return 0.0
    matched = sum(
        1 for token in tokens
        if any(_tokens_match(token, candidate) for candidate in content_tokens)
    )
    return TOKEN_OVERLAP_SCALE * matched / len(tokens)


def recency_factor(
    created_at: Optional[datetime],
    expires_at: Optional[datetime],
    now: datetime,
    default_window: timedelta,
) -> float:
    """Linear decay from 1.0 at creation to 0.0 at the end of the retention window."""
    created_at = as_utc(created_at)
    if created_at is None:
        return 0.0
    expires_at = as_utc(expires_at)
    window = (expires_at - created_at) if expires_at is not None else default_window
    if window.total_seconds() <= 0:
        return 0.0
    age = max(0.0, (now - created_at).total_seconds())
    return max(0.0, 1.0 - age / window.total_seconds())


def compute_rank(similarity: float, importance: float, recency: float) -> float:
    return (
        similarity * SIMILARITY_WEIGHT
        + (importance or 0.0) * IMPORTANCE_WEIGHT
        + recency * RECENCY_WEIGHT
    )


def build_memory_query(
    owner_id: str,
    text: str,
    policy: SearchPolicy,
    limit: Optional[int] = None,
    min_similarity: Optional[float] = None,
    mode: Optional[str] = None,
    embedding: Optional[list[float]] = None,
) -> MemoryQuery:
    """Fill any unspecified search parameter from the shared policy."""
    query = MemoryQuery(
        owner_id=owner_id,
        text=text,
        limit=policy.limit if limit is None else limit,
        min_similarity=policy.min_similarity if min_similarity is None else min_similarity,
        mode=(mode or policy.mode).lower(),
        embedding=embedding,
    )
    validate_owner_id(query.owner_id)
    validate_required_text(query.text, "query", config.MAX_QUERY_LENGTH)
    validate_limit(query.limit, "limit", config.MAX_RESULT_LIMIT)
    validate_unit_interval(query.min_similarity, "min_similarity")
    validate_search_mode(query.mode)
    return query


class MemoryRetriever:
    def __init__(
        self,
        store: MemoryStore,
        embedder: EmbeddingGenerator,
        policy: Optional[SearchPolicy] = None,
        retention_config: Optional[RetentionConfig] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.policy = policy or SearchPolicy()
        retention_config = retention_config or RetentionConfig()
        self._default_window = timedelta(days=retention_config.default_retention_days)

    def _query_embedding(self, query: MemoryQuery) -> Optional[list[float]]:
        if query.embedding is not None:
            return query.embedding
        try:
            return self.embedder.embed(query.text[: config.MAX_EMBEDDING_TEXT_LENGTH])
        except EmbeddingUnavailable:
            logger.info("memory_search_lexical_fallback", extra={"owner_id": query.owner_id})
            return None

    def _is_live(self, record: MemoryRecord, now: datetime) -> bool:
        if record.owner_id is None or not record.is_active:
            return False
        expires_at = as_utc(record.expires_at)
        return expires_at is None or expires_at > now

    def _lexical_matches(self, query: MemoryQuery, now: datetime) -> list[tuple[float, MemoryRecord]]:
        """Score every SQL-prefiltered row and keep the strongest matches.

        The prefilter is loose (any shared 4-character prefix), so rows are
        paged through in full rather than cut by age before scoring.
        """
        # Prefix matches share at least the first PREFIX_MATCH_MIN_LENGTH characters.
        terms = sorted({token[:PREFIX_MATCH_MIN_LENGTH] for token in query_tokens(query.text)})
        best: list[tuple[float, float, str, MemoryRecord]] = []
        offset = 0
        while True:
            page = self.store.lexical_candidates(
                query.owner_id,
                terms,
                now,
                limit=LEXICAL_PAGE_SIZE,
                offset=offset,
            )
            for record in page:
                score = lexical_score(query.text, record.content)
                if score <= 0.0 or score < query.min_similarity:
                    continue
                entry = (score, as_utc(record.created_at).timestamp(), record.id, record)
                if len(best) < LEXICAL_CANDIDATE_LIMIT:
                    heapq.heappush(best, entry)
                elif entry[:3] > best[0][:3]:
                    heapq.heapreplace(best, entry)
            if len(page) < LEXICAL_PAGE_SIZE:
                break
            offset += LEXICAL_PAGE_SIZE
        return [(score, record) for score, _, _, record in best]

    def search(self, query: MemoryQuery, now: Optional[datetime] = None) -> list[ScoredMemory]:
        now = now or utc_now()
        use_vector = query.mode in ("vector", "hybrid")
        use_lexical = query.mode in ("lexical", "hybrid")

        vector_scores: dict[str, float] = {}
        records: dict[str, MemoryRecord] = {}

        if use_vector:
            query_embedding = self._query_embedding(query)
            if query_embedding is None:
                # Degrade to lexical rather than failing the search.
                use_lexical = True
            else:
                for record in self.store.vector_candidates(query.owner_id, now):
                    score = cosine_similarity(query_embedding, record.embedding)
                    if score is None:
                        continue
                    vector_scores[record.id] = score
                    records[record.id] = record

        lexical_scores: dict[str, float] = {}
        if use_lexical:
            for score, record in self._lexical_matches(query, now):
                lexical_scores[record.id] = score
                records.setdefault(record.id, record)

        results: list[ScoredMemory] = []
        for record_id, record in records.items():
            if record.owner_id != query.owner_id or not self._is_live(record, now):
                continue
            vector = vector_scores.get(record_id)
            lexical = lexical_scores.get(record_id, 0.0)
            similarity = max(vector or 0.0, lexical)
            if similarity < query.min_similarity:
                continue
            recency = recency_factor(record.created_at, record.expires_at, now, self._default_window)
            results.append(
                ScoredMemory(
                    record=record,
                    similarity=similarity,
                    rank=compute_rank(similarity, record.importance, recency),
                    vector_score=vector,
                    lexical_score=lexical,
                )
            )

        results.sort(
            key=lambda item: (item.rank, as_utc(item.record.created_at).timestamp()),
            reverse=True,
        )
        return results[: query.limit]

    def search_text(
        self,
        owner_id: str,
        text: str,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
        mode: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[ScoredMemory]:
        query = build_memory_query(owner_id, text, self.policy, limit, min_similarity, mode)
        return self.search(query, now=now)


def format_memory_context(memories: Sequence[ScoredMemory], personal: bool = False) -> str:
    """Render retrieved memories as a prompt block."""
    if not memories:
        return ""
    lines = ["Relevant conversation history:"]
    if personal:
        lines.append("IMPORTANT: These are personal details about the user:")
    for index, item in enumerate(memories, start=1):
        relevance = int(round(item.similarity * 100))
        lines.append(f"{index}. {item.record.content} (relevance: {relevance}%)")
    return "\n".join(lines)
