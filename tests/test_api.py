import os

os.environ.setdefault("EMBEDDING_PROVIDER", "hashing")
os.environ.setdefault("MEMORY_SWEEP_INTERVAL_SECONDS", "0")

import pytest
from starlette.testclient import TestClient

from app.main import create_app
from core.config import RetentionConfig
from core.runtime import build_runtime
from core.services.embeddings import HashingEmbeddingGenerator
from core.services.registry import ProviderRegistry

from tests.conftest import FakeProvider


def make_client(tmp_path, providers):
    def factory():
        return build_runtime(
            database_url=f"sqlite:///{tmp_path / 'api.sqlite'}",
            registry=ProviderRegistry(providers),
            embedder=HashingEmbeddingGenerator(64),
            retention_config=RetentionConfig(sweep_interval_seconds=0),
        )

    return TestClient(create_app(runtime_factory=factory))


@pytest.fixture
def client(tmp_path):
    with make_client(tmp_path, [FakeProvider("alpha", reply="Hello from alpha")]) as test_client:
        yield test_client


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "MemoryRouter"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"]["ok"] is True
    assert body["providers_configured"] == 1
    assert body["write_queue"]["running"] is True


def test_store_then_search_by_meaning(client):
    stored = client.post("/memories", json={"owner_id": "u1", "text": "My name is Kunal"})
    assert stored.status_code == 200
    memory_id = stored.json()["memory_id"]
    assert stored.json()["expires_at"] is not None

    found = client.post("/memories/search", json={"owner_id": "u1", "query": "Do you know my name?"})
    assert found.status_code == 200
    memories = found.json()["memories"]
    assert memory_id in [item["id"] for item in memories]

    other = client.post("/memories/search", json={"owner_id": "u2", "query": "Do you know my name?"})
    assert other.json()["memories"] == []


def test_store_rejects_empty_text(client):
    response = client.post("/memories", json={"owner_id": "u1", "text": "   "})
    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "text"


def test_search_rejects_unknown_mode(client):
    response = client.post("/memories/search", json={"owner_id": "u1", "query": "hello", "mode": "fuzzy"})
    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "mode"


def test_delete_is_owner_scoped(client):
    memory_id = client.post("/memories", json={"owner_id": "u1", "text": "Locker code 1234"}).json()["memory_id"]

    assert client.delete(f"/memories/{memory_id}", params={"owner_id": "u2"}).status_code == 404
    response = client.delete(f"/memories/{memory_id}", params={"owner_id": "u1"})
    assert response.status_code == 200
    assert response.json()["status"] == "deleted"
    assert client.delete(f"/memories/{memory_id}", params={"owner_id": "u1"}).status_code == 404


def test_chat_ok(client):
    response = client.post("/chat", json={"owner_id": "u1", "text": "What is the capital of France?"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["provider_used"] == "alpha"
    assert body["content"] == "Hello from alpha"
    assert body["query_type"] == "generic"


def test_chat_validation_error(client):
    response = client.post("/chat", json={"owner_id": "u1", "text": ""})
    assert response.status_code == 400
    response = client.post("/chat", json={"owner_id": "u1", "text": "hi", "model": "gpt-99"})
    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "model"


def test_chat_degraded_without_providers(tmp_path):
    with make_client(tmp_path, []) as client:
        response = client.post("/chat", json={"owner_id": "u1", "text": "What's the latest news today?"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["error_code"] == "all_providers_exhausted"
    assert body["provider_used"] is None
    assert body["content"]


def test_provider_routes(client):
    client.post("/chat", json={"owner_id": "u1", "text": "Hello there"})
    health = client.get("/providers/health").json()
    assert health["alpha"]["available"] is True
    assert health["alpha"]["attempts"] == 1

    providers = client.get("/providers").json()["providers"]
    assert [p["name"] for p in providers] == ["alpha"]
