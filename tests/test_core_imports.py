import os

os.environ.setdefault("EMBEDDING_PROVIDER", "hashing")

import asyncio


def test_core_imports():
    import core.models  # noqa: F401
    import core.runtime  # noqa: F401
    import core.services.orchestrator  # noqa: F401
    import app.main  # noqa: F401


def test_core_smoke_lifecycle(tmp_path):
    from core.config import RetentionConfig
    from core.runtime import build_runtime
    from core.services.embeddings import HashingEmbeddingGenerator
    from core.services.registry import ProviderRegistry

    from tests.conftest import FakeProvider

    runtime = build_runtime(
        database_url=f"sqlite:///{tmp_path / 'smoke.sqlite'}",
        registry=ProviderRegistry([FakeProvider("alpha", reply="Nice to meet you")]),
        embedder=HashingEmbeddingGenerator(64),
        retention_config=RetentionConfig(sweep_interval_seconds=0),
    )

    async def scenario():
        await runtime.start()
        try:
            first = await runtime.orchestrator.chat("u1", "My name is Kunal")
            await runtime.write_queue.join()
            second = await runtime.orchestrator.chat("u1", "Do you know my name?")
        finally:
            await runtime.close()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.status == "ok"
    assert second.memories_used >= 1
    assert runtime.registry.providers()[0].closed is True
