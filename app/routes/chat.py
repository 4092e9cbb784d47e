"""
Chat endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from app.deps import get_runtime
from app.schemas import ChatRequest
from core.errors import InvalidInput
from core.runtime import Runtime


router = APIRouter()


@router.post("/chat")
async def chat(body: ChatRequest, runtime: Runtime = Depends(get_runtime)):
    """Route one message through the provider fallback chain.

    Exhaustion is not an HTTP error: the body carries ``status: degraded``
    and ``error_code: all_providers_exhausted``.
    """
    try:
        result = await runtime.orchestrator.chat(
            owner_id=body.owner_id,
            text=body.text,
            explicit_provider=body.provider,
            explicit_model=body.model,
            conversation_id=body.conversation_id,
            history_summary=body.history_summary,
        )
    except InvalidInput as exc:
        raise HTTPException(
            status_code=400,
            detail={
                "status": "error",
                "error_type": "validation_error",
                "field": exc.field,
                "message": str(exc),
            },
        ) from exc
    return result.to_dict()
