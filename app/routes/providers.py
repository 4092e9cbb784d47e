"""
Provider diagnostics.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.deps import get_runtime
from core.runtime import Runtime


router = APIRouter()


@router.get("/providers/health")
async def providers_health(runtime: Runtime = Depends(get_runtime)):
    """Per-provider availability, average latency and failure rate."""
    return runtime.orchestrator.provider_health()


@router.get("/providers")
async def providers(runtime: Runtime = Depends(get_runtime)):
    return {
        "providers": [
            {
                "name": profile.name,
                "models": list(profile.models),
                "affinities": list(profile.affinities),
                "priority": profile.priority,
                "cost_tier": profile.cost_tier,
            }
            for profile in runtime.registry.profiles()
        ]
    }
