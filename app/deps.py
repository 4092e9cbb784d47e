"""
Dependency helpers for the FastAPI app.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from core.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime not initialized")
    return runtime


def raise_for_payload(payload: dict) -> dict:
    """Turn a service_tool error payload into a 400 response."""
    if payload.get("status") == "error":
        raise HTTPException(status_code=400, detail=payload)
    return payload
