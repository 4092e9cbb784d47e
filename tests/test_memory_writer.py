from datetime import timedelta

import pytest

from core.errors import InvalidInput, MemoryStoreUnavailable
from core.models import as_utc, utc_now
from core.services.embeddings import DisabledEmbeddingGenerator, HashingEmbeddingGenerator
from core.services.memory_store import MemoryStore
from core.services.memory_writer import (
    MemoryWriter,
    compute_importance,
    extract_personal_facts,
)
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def test_store_defaults(writer):
    now = utc_now()
    record = writer.store("u1", "Photosynthesis converts light into chemical energy", now=now)
    assert record.id
    assert record.owner_id == "u1"
    assert record.importance == 0.5
    assert record.embedding is not None
    assert record.embedding_dim == 64
    assert record.priority == "medium"
    assert as_utc(record.expires_at) == now + timedelta(days=90)
    assert record.is_active is True


def test_personal_fact_raises_importance_and_tags(writer):
    record = writer.store("u1", "My name is Kunal")
    assert record.importance == pytest.approx(0.65)
    assert "personal" in record.tags
    assert "identity" in record.tags


def test_extract_personal_facts():
    facts = extract_personal_facts("Hi, my name is Kunal and I live in Pune. My favorite subject is physics.")
    assert ("name", "Kunal") in facts
    assert ("location", "Pune") in facts
    assert ("favorite", "subject is physics") in facts
    assert extract_personal_facts("The sky is blue.") == []


def test_importance_is_clamped():
    assert compute_importance("critical", True, True) == 1.0
    assert compute_importance("low", False, False) == pytest.approx(0.3)


def test_high_priority_and_permanent_never_expire(writer):
    high = writer.store("u1", "Exam on Friday", {"priority": "high", "tags": ["exam"]})
    assert high.expires_at is None
    assert high.importance == pytest.approx(0.75)

    permanent = writer.store("u1", "Prefers metric units", {"retention": "permanent"})
    assert permanent.expires_at is None


def test_retention_windows(writer):
    now = utc_now()
    session = writer.store("u1", "Session note", {"retention": "session"}, now=now)
    short = writer.store("u1", "Short note", {"retention": "short_term"}, now=now)
    assert as_utc(session.expires_at) == now + timedelta(days=1)
    assert as_utc(short.expires_at) == now + timedelta(days=7)


@pytest.mark.parametrize(
    "owner_id,text,metadata,field",
    [
        ("", "hello", None, "owner_id"),
        ("u1", "   ", None, "text"),
        ("u1", "hello", {"priority": "urgent"}, "priority"),
        ("u1", "hello", {"retention": "forever"}, "retention"),
        ("u1", "hello", {"tags": "not-a-list"}, "tags"),
    ],
)
def test_invalid_input_rejected(writer, owner_id, text, metadata, field):
    with pytest.raises(InvalidInput) as excinfo:
        writer.store(owner_id, text, metadata)
    assert excinfo.value.field == field


def test_embedding_failure_still_stores(store, retention_config):
    writer = MemoryWriter(store, DisabledEmbeddingGenerator(64), retention_config)
    record = writer.store("u1", "My name is Kunal")
    assert record.embedding is None
    assert store.get("u1", record.id) is not None


def test_duplicate_writes_are_kept(writer, store):
    first = writer.store("u1", "Same fact")
    second = writer.store("u1", "Same fact")
    assert first.id != second.id
    assert store.count("u1") == 2


def test_store_exchange_formats_turns(writer):
    record = writer.store_exchange("u1", "My name is Kunal", "Nice to meet you, Kunal!", conversation_id="c1")
    assert record.content == "User: My name is Kunal\nAssistant: Nice to meet you, Kunal!"
    assert "conversation" in record.tags
    assert record.source_conversation_id == "c1"
    assert record.expires_at is None


def test_unreachable_store_raises_store_unavailable(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'db.sqlite'}")
    store = MemoryStore(sessionmaker(bind=engine))
    writer = MemoryWriter(store, HashingEmbeddingGenerator(64))
    with pytest.raises(MemoryStoreUnavailable):
        writer.store("u1", "hello")


def test_writer_store_persists_through_the_memory_store(writer, store):
    record = writer.store("u1", "My name is Kunal")
    assert store.get("u1", record.id).content == "My name is Kunal"

    exchange = writer.store_exchange("u1", "I live in Pune", "Noted!")
    assert store.get("u1", exchange.id) is not None
    assert store.count("u1") == 2
