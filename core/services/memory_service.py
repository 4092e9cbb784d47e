"""
Memory entry points returning JSON-ready payloads.

StoreMemory, SearchMemory and memory deletion, wrapped so that validation
failures come back as error payloads instead of exceptions.
"""

from __future__ import annotations

from functools import wraps
from typing import Callable, List, Optional

import core.config as config
from core.errors import InvalidInput
from core.services.memory_search import MemoryRetriever
from core.services.memory_store import MemoryStore
from core.services.memory_writer import MemoryWriter
from core.validators import validate_owner_id, validate_required_text

logger = config.logger


def _tool_error_payload(tool_name: str, exc: InvalidInput) -> dict:
    return {
        "status": "error",
        "error_type": "validation_error",
        "tool": tool_name,
        "field": exc.field,
        "message": str(exc),
    }


def _log_validation_issue(tool_name: str, exc: InvalidInput, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except InvalidInput as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            return _tool_error_payload(fn.__name__, exc)
        except ValueError as exc:
            issue = InvalidInput(str(exc), field="unknown", error_type="value_error")
            _log_validation_issue(fn.__name__, issue, warn=True)
            return _tool_error_payload(fn.__name__, issue)
    return wrapper


class MemoryService:
    def __init__(self, store: MemoryStore, writer: MemoryWriter, retriever: MemoryRetriever):
        self.store = store
        self.writer = writer
        self.retriever = retriever

    @service_tool
    def memory_store(
        self,
        owner_id: str,
        text: str,
        priority: str = "medium",
        retention: str = "long_term",
        tags: Optional[List[str]] = None,
        conversation_id: Optional[str] = None,
    ) -> dict:
        """
        Store a memory for one owner.

        Args:
            owner_id: Owner of the memory; every later read is scoped to it
            text: Memory content
            priority: low | medium | high | critical
            retention: session | short_term | long_term | permanent
            tags: Free-form labels
            conversation_id: Source conversation, if any

        Returns:
            Payload with the new memory id
        """
        record = self.writer.store(
            owner_id,
            text,
            {
                "priority": priority,
                "retention": retention,
                "tags": tags,
                "conversation_id": conversation_id,
            },
        )
        return {
            "status": "stored",
            "memory_id": record.id,
            "importance": record.importance,
            "tags": list(record.tags or []),
            "has_embedding": record.embedding is not None,
            "expires_at": record.to_dict()["expires_at"],
        }

    @service_tool
    def memory_search(
        self,
        owner_id: str,
        query: str,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
        mode: Optional[str] = None,
    ) -> dict:
        """Search one owner's memories; unspecified parameters come from the search policy."""
        results = self.retriever.search_text(
            owner_id,
            query,
            limit=limit,
            min_similarity=min_similarity,
            mode=mode,
        )
        return {
            "status": "ok",
            "count": len(results),
            "memories": [item.to_dict() for item in results],
        }

    @service_tool
    def memory_delete(self, owner_id: str, memory_id: str) -> dict:
        validate_owner_id(owner_id)
        validate_required_text(memory_id, "memory_id", config.MAX_SHORT_TEXT_LENGTH)
        deleted = self.store.deactivate(owner_id, memory_id)
        return {
            "status": "deleted" if deleted else "not_found",
            "memory_id": memory_id,
        }
