"""
MemoryRouter database models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    Column, String, Text, Float, Boolean, DateTime, Integer, CheckConstraint, Index, JSON
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on round-trip; treat naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _uuid_default() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Memory records
# =============================================================================

class MemoryRecord(Base):
    __tablename__ = "memory_records"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    owner_id = Column(String(255), nullable=False)
    source_conversation_id = Column(String(255))
    content = Column(Text, nullable=False)

    # Embedding (nullable: lexical search still works without one)
    embedding = Column(JSON)
    embedding_model = Column(String(100))
    embedding_dim = Column(Integer)

    importance = Column(Float, default=0.5, nullable=False)
    tags = Column(JSON, default=list)
    priority = Column(String(20), default="medium", nullable=False)
    retention = Column(String(20), default="long_term", nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    expires_at = Column(DateTime(timezone=True))
    is_active = Column(Boolean, default=True, nullable=False)
    deactivated_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint('importance >= 0 AND importance <= 1', name='check_importance'),
        Index('ix_memory_records_owner_active', 'owner_id', 'is_active'),
        Index('ix_memory_records_expires_at', 'expires_at'),
    )

    def to_dict(self) -> dict:
        created_at = as_utc(self.created_at)
        expires_at = as_utc(self.expires_at)
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "conversation_id": self.source_conversation_id,
            "content": self.content,
            "importance": self.importance,
            "tags": list(self.tags or []),
            "priority": self.priority,
            "retention": self.retention,
            "has_embedding": self.embedding is not None,
            "created_at": created_at.isoformat() if created_at else None,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "is_active": self.is_active,
        }


# =============================================================================
# Query/result value objects
# =============================================================================

@dataclass
class MemoryQuery:
    owner_id: str
    text: str
    limit: int
    min_similarity: float
    mode: str
    embedding: Optional[list[float]] = None


@dataclass
class ScoredMemory:
    record: MemoryRecord
    similarity: float
    rank: float
    vector_score: Optional[float] = None
    lexical_score: float = 0.0

    def to_dict(self) -> dict:
        payload = self.record.to_dict()
        payload["similarity"] = round(self.similarity, 4)
        payload["rank"] = round(self.rank, 4)
        return payload


@dataclass
class ChatResult:
    content: str
    provider_used: Optional[str]
    model_used: Optional[str]
    query_type: str
    memories_used: int
    status: str = "ok"
    error_code: Optional[str] = None
    latency_ms: float = 0.0
    fallback_used: bool = False
    attempts: list[dict] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.status == "degraded"

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "provider_used": self.provider_used,
            "model_used": self.model_used,
            "query_type": self.query_type,
            "memories_used": self.memories_used,
            "status": self.status,
            "degraded": self.degraded,
            "error_code": self.error_code,
            "latency_ms": round(self.latency_ms, 2),
            "fallback_used": self.fallback_used,
            "attempts": list(self.attempts),
        }
