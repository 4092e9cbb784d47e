"""
Expiry sweep for memory records.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import core.config as config
from core.config import RetentionConfig
from core.models import utc_now
from core.services.memory_store import MemoryStore

# Upper bound on batches per tick so one sweep cannot run unbounded.
MAX_BATCHES_PER_TICK = 20


def run_memory_sweep(
    store: MemoryStore,
    retention_config: Optional[RetentionConfig] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Deactivate expired records, then purge records inactive past the grace period.

    Each batch runs in its own short transaction, so user requests are never
    held behind a long sweep.
    """
    retention_config = retention_config or RetentionConfig()
    now = now or utc_now()
    batch_limit = retention_config.sweep_batch_limit

    deactivated = 0
    for _ in range(MAX_BATCHES_PER_TICK):
        count = store.deactivate_expired(now, batch_limit)
        deactivated += count
        if count < batch_limit:
            break

    purged = 0
    purge_before = now - timedelta(days=retention_config.purge_grace_days)
    for _ in range(MAX_BATCHES_PER_TICK):
        count = store.purge_inactive(purge_before, batch_limit)
        purged += count
        if count < batch_limit:
            break

    stats = {"deactivated": deactivated, "purged": purged}
    config.logger.info("Memory sweep complete", extra=stats)
    return stats
