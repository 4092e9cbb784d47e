"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "MemoryRouter",
        "version": "0.1.0",
        "description": "Memory-augmented chat routing across fallback AI providers",
        "embedding_provider": config.EMBEDDING_PROVIDER,
        "endpoints": {
            "health": "/health",
            "chat": "/chat",
            "memories": "/memories",
            "memory_search": "/memories/search",
            "providers": "/providers",
            "provider_health": "/providers/health",
        },
    }
