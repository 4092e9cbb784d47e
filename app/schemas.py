"""
Request bodies for the HTTP surface.

Field-level validation stays in core so the HTTP layer and direct callers
reject the same inputs the same way.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class ChatRequest(BaseModel):
    owner_id: str
    text: str
    provider: Optional[str] = None
    model: Optional[str] = None
    conversation_id: Optional[str] = None
    history_summary: Optional[str] = None


class StoreMemoryRequest(BaseModel):
    owner_id: str
    text: str
    priority: str = "medium"
    retention: str = "long_term"
    tags: Optional[List[str]] = None
    conversation_id: Optional[str] = None


class SearchMemoryRequest(BaseModel):
    owner_id: str
    query: str
    limit: Optional[int] = None
    min_similarity: Optional[float] = None
    mode: Optional[str] = None
