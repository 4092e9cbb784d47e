import os

os.environ.setdefault("EMBEDDING_PROVIDER", "hashing")

from core.services.memory_service import MemoryService


def test_service_tools_smoke(store, writer, retriever):
    memory_service = MemoryService(store, writer, retriever)

    stored = memory_service.memory_store(
        owner_id="u1",
        text="My name is Kunal",
        tags=["intro"],
        conversation_id="conv-smoke-1",
    )
    assert stored["status"] == "stored"
    assert stored["has_embedding"] is True
    assert set(stored["tags"]) >= {"intro", "personal", "identity"}

    found = memory_service.memory_search(owner_id="u1", query="Do you know my name?")
    assert found["status"] == "ok"
    assert found["count"] == 1
    assert found["memories"][0]["id"] == stored["memory_id"]
    assert found["memories"][0]["conversation_id"] == "conv-smoke-1"

    deleted = memory_service.memory_delete(owner_id="u1", memory_id=stored["memory_id"])
    assert deleted["status"] == "deleted"
    again = memory_service.memory_delete(owner_id="u1", memory_id=stored["memory_id"])
    assert again["status"] == "not_found"

    after = memory_service.memory_search(owner_id="u1", query="Do you know my name?")
    assert after["count"] == 0


def test_service_tools_return_validation_payloads(store, writer, retriever):
    memory_service = MemoryService(store, writer, retriever)

    bad_priority = memory_service.memory_store(owner_id="u1", text="hello", priority="urgent")
    assert bad_priority["status"] == "error"
    assert bad_priority["error_type"] == "validation_error"
    assert bad_priority["tool"] == "memory_store"
    assert bad_priority["field"] == "priority"

    bad_limit = memory_service.memory_search(owner_id="u1", query="hello", limit=1000)
    assert bad_limit["status"] == "error"
    assert bad_limit["field"] == "limit"

    missing_owner = memory_service.memory_delete(owner_id="", memory_id="abc")
    assert missing_owner["field"] == "owner_id"
