"""
Health endpoint.
"""

from __future__ import annotations

import os

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text

import core.config as config
from app.deps import get_runtime
from core.runtime import Runtime


router = APIRouter()


def _check_db_health(runtime: Runtime) -> dict:
    try:
        with runtime.database.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        return {"ok": False, "error": type(exc).__name__}
    return {"ok": True}


def _check_embedding_health(runtime: Runtime) -> dict:
    status = runtime.embedder.status()
    embedding_status = {
        "status": "ready",
        "provider": config.EMBEDDING_PROVIDER,
        **status,
    }
    if runtime.embedder.model_name == "none":
        embedding_status["status"] = "disabled"
    elif status.get("circuit_breaker", {}).get("open"):
        embedding_status["status"] = "cooldown"
    return embedding_status


@router.get("/health")
async def health(runtime: Runtime = Depends(get_runtime)):
    """Health check endpoint."""
    db_health = _check_db_health(runtime)
    embedding_status = _check_embedding_health(runtime)
    if not db_health.get("ok"):
        raise HTTPException(
            status_code=503,
            detail={"database": db_health, "embedding_provider": embedding_status},
        )

    return {
        "status": "healthy",
        "service": "MemoryRouter",
        "version": "0.1.0",
        "instance_id": os.environ.get("MEMORYROUTER_INSTANCE_ID", "memoryrouter-1"),
        "database": db_health,
        "embedding_provider": embedding_status,
        "write_queue": runtime.write_queue.stats(),
        "providers_configured": len(runtime.registry.names()),
    }
