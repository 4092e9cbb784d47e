"""
Memory writer: validate, score, embed, persist.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

import core.config as config
from core.config import RetentionConfig
from core.errors import EmbeddingUnavailable, InvalidInput
from core.models import MemoryRecord, utc_now
from core.services.embeddings import EmbeddingGenerator
from core.services.memory_store import MemoryStore
from core.validators import (
    validate_optional_text,
    validate_owner_id,
    validate_priority,
    validate_required_text,
    validate_retention,
    validate_string_list,
)

logger = config.logger

PRIORITY_IMPORTANCE = {
    "low": 0.3,
    "medium": 0.5,
    "high": 0.7,
    "critical": 0.9,
}
PERSONAL_FACT_BOOST = 0.15
TAGS_BOOST = 0.05

SESSION_RETENTION = timedelta(days=1)
SHORT_TERM_RETENTION = timedelta(days=7)
NEVER_EXPIRE_PRIORITIES = {"high", "critical"}

_FACT_TAIL = r"([A-Za-z][\w'\- ]{0,60}?)(?=[.,!?;]|\band\b|\bbut\b|$)"

PERSONAL_FACT_PATTERNS = (
    ("name", re.compile(r"\bmy name is\s+" + _FACT_TAIL, re.IGNORECASE)),
    ("name", re.compile(r"\bcall me\s+" + _FACT_TAIL, re.IGNORECASE)),
    ("location", re.compile(r"\bi live in\s+" + _FACT_TAIL, re.IGNORECASE)),
    ("origin", re.compile(r"\bi(?:'m| am) from\s+" + _FACT_TAIL, re.IGNORECASE)),
    ("study", re.compile(r"\bi(?:'m| am) studying\s+" + _FACT_TAIL, re.IGNORECASE)),
    ("birthday", re.compile(r"\bmy birthday is\s+([\w ,]{1,40}?)(?=[.!?;]|$)", re.IGNORECASE)),
    ("favorite", re.compile(r"\bmy favou?rite\s+(\w+\s+is\s+" + _FACT_TAIL[1:], re.IGNORECASE)),
)


@dataclass
class MemoryMetadata:
    priority: str = "medium"
    retention: str = "long_term"
    tags: list[str] = field(default_factory=list)
    conversation_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "MemoryMetadata":
        if data is None:
            return cls()
        if isinstance(data, MemoryMetadata):
            return data
        if not isinstance(data, dict):
            raise InvalidInput("metadata must be an object", field="metadata", error_type="invalid_type")
        tags = data.get("tags")
        return cls(
            priority=data.get("priority") or "medium",
            retention=data.get("retention") or "long_term",
            tags=tags if tags is not None else [],
            conversation_id=data.get("conversation_id"),
        )

    def validate(self) -> None:
        validate_priority(self.priority)
        validate_retention(self.retention)
        validate_string_list(self.tags, "tags", config.MAX_TAG_ITEMS, config.MAX_TAG_LENGTH)
        validate_optional_text(self.conversation_id, "conversation_id", config.MAX_SHORT_TEXT_LENGTH)


def extract_personal_facts(text: str) -> list[tuple[str, str]]:
    """Return (kind, value) pairs for self-descriptions found in ``text``."""
    facts: list[tuple[str, str]] = []
    for kind, pattern in PERSONAL_FACT_PATTERNS:
        for match in pattern.finditer(text or ""):
            value = match.group(1).strip()
            if value:
                facts.append((kind, value))
    return facts


def compute_importance(priority: str, has_personal_fact: bool, has_tags: bool) -> float:
    score = PRIORITY_IMPORTANCE.get(priority, PRIORITY_IMPORTANCE["medium"])
    if has_personal_fact:
        score += PERSONAL_FACT_BOOST
    if has_tags:
        score += TAGS_BOOST
    return max(0.0, min(1.0, score))


def compute_expiry(
    priority: str,
    retention: str,
    created_at: datetime,
    retention_config: RetentionConfig,
) -> Optional[datetime]:
    if retention == "permanent" or priority in NEVER_EXPIRE_PRIORITIES:
        return None
    if retention == "session":
        return created_at + SESSION_RETENTION
    if retention == "short_term":
        return created_at + SHORT_TERM_RETENTION
    return created_at + timedelta(days=retention_config.default_retention_days)


def _merge_tags(tags: Sequence[str], extra: Sequence[str]) -> list[str]:
    merged: list[str] = []
    for tag in list(tags) + list(extra):
        cleaned = tag.strip()
        if cleaned and cleaned not in merged:
            merged.append(cleaned)
    return merged


class MemoryWriter:
    def __init__(
        self,
        store: MemoryStore,
        embedder: EmbeddingGenerator,
        retention_config: Optional[RetentionConfig] = None,
    ):
        self._store = store
        self.embedder = embedder
        self.retention_config = retention_config or RetentionConfig()

    def _embed(self, text: str) -> Optional[list[float]]:
        try:
            vector = self.embedder.embed(text[: config.MAX_EMBEDDING_TEXT_LENGTH])
        except EmbeddingUnavailable:
            logger.info("memory_write_without_embedding", extra={"model": self.embedder.model_name})
            return None
        if len(vector) != self.embedder.dimension:
            logger.warning(
                "embedding_dimension_mismatch",
                extra={"expected": self.embedder.dimension, "actual": len(vector)},
            )
            return None
        return vector

    def store(
        self,
        owner_id: str,
        text: str,
        metadata: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> MemoryRecord:
        """Persist one memory; duplicates are stored as separate records."""
        validate_owner_id(owner_id)
        validate_required_text(text, "text", config.MAX_TEXT_LENGTH)
        meta = MemoryMetadata.from_dict(metadata)
        meta.validate()

        now = now or utc_now()
        content = text.strip()
        facts = extract_personal_facts(content)
        extra_tags: list[str] = []
        if facts:
            extra_tags.append("personal")
            if any(kind == "name" for kind, _ in facts):
                extra_tags.append("identity")

        embedding = self._embed(content)
        record = MemoryRecord(
            owner_id=owner_id,
            source_conversation_id=meta.conversation_id,
            content=content,
            embedding=embedding,
            embedding_model=self.embedder.model_name if embedding is not None else None,
            embedding_dim=len(embedding) if embedding is not None else None,
            importance=compute_importance(meta.priority, bool(facts), bool(meta.tags)),
            tags=_merge_tags(meta.tags, extra_tags),
            priority=meta.priority,
            retention=meta.retention,
            created_at=now,
            expires_at=compute_expiry(meta.priority, meta.retention, now, self.retention_config),
            is_active=True,
        )
        stored = self._store.insert(record)
        logger.info(
            "memory_stored",
            extra={
                "memory_id": stored.id,
                "owner_id": owner_id,
                "has_embedding": embedding is not None,
                "personal_facts": len(facts),
            },
        )
        return stored

    def store_exchange(
        self,
        owner_id: str,
        user_text: str,
        assistant_text: str,
        conversation_id: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> MemoryRecord:
        validate_required_text(user_text, "user_text", config.MAX_TEXT_LENGTH)
        content = f"User: {user_text.strip()}\nAssistant: {(assistant_text or '').strip()}"
        content = content[: config.MAX_TEXT_LENGTH]
        has_fact = bool(extract_personal_facts(user_text))
        return self.store(
            owner_id,
            content,
            {
                "priority": "high" if has_fact else "medium",
                "retention": "long_term",
                "tags": _merge_tags(list(tags or []), ["conversation"]),
                "conversation_id": conversation_id,
            },
            now=now,
        )
