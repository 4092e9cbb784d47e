"""
Direct memory endpoints: store, search, delete.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException

from app.deps import get_runtime, raise_for_payload
from app.schemas import SearchMemoryRequest, StoreMemoryRequest
from core.errors import MemoryStoreUnavailable
from core.runtime import Runtime


router = APIRouter(prefix="/memories")


async def _call(fn, *args, **kwargs) -> dict:
    try:
        payload = await asyncio.to_thread(fn, *args, **kwargs)
    except MemoryStoreUnavailable as exc:
        raise HTTPException(status_code=503, detail="memory store unavailable") from exc
    return raise_for_payload(payload)


@router.post("")
async def store_memory(body: StoreMemoryRequest, runtime: Runtime = Depends(get_runtime)):
    payload = await _call(
        runtime.memory.memory_store,
        owner_id=body.owner_id,
        text=body.text,
        priority=body.priority,
        retention=body.retention,
        tags=body.tags,
        conversation_id=body.conversation_id,
    )
    return {"memory_id": payload["memory_id"], "expires_at": payload["expires_at"]}


@router.post("/search")
async def search_memories(body: SearchMemoryRequest, runtime: Runtime = Depends(get_runtime)):
    payload = await _call(
        runtime.memory.memory_search,
        owner_id=body.owner_id,
        query=body.query,
        limit=body.limit,
        min_similarity=body.min_similarity,
        mode=body.mode,
    )
    return {"memories": payload["memories"]}


@router.delete("/{memory_id}")
async def delete_memory(memory_id: str, owner_id: str, runtime: Runtime = Depends(get_runtime)):
    payload = await _call(runtime.memory.memory_delete, owner_id=owner_id, memory_id=memory_id)
    if payload["status"] == "not_found":
        raise HTTPException(status_code=404, detail="memory not found")
    return payload
