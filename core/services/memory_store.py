"""
Owner-scoped persistence for memory records.

Every user-facing method filters on owner_id. Sweep helpers are the only
unscoped operations and are not reachable from request handlers.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

import core.config as config
from core.errors import MemoryStoreUnavailable
from core.models import MemoryRecord, utc_now

logger = config.logger


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MemoryStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("memory_store_error", extra={"error": type(exc).__name__})
            raise MemoryStoreUnavailable("memory store unavailable") from exc
        finally:
            db.close()

    def _live_filter(self, query, owner_id: str, now: datetime):
        return query.filter(
            MemoryRecord.owner_id == owner_id,
            MemoryRecord.is_active.is_(True),
            or_(MemoryRecord.expires_at.is_(None), MemoryRecord.expires_at > now),
        )

    def insert(self, record: MemoryRecord) -> MemoryRecord:
        with self._session() as db:
            db.add(record)
            db.commit()
            db.refresh(record)
            db.expunge(record)
            return record

    def get(self, owner_id: str, memory_id: str) -> Optional[MemoryRecord]:
        with self._session() as db:
            record = (
                db.query(MemoryRecord)
                .filter(MemoryRecord.owner_id == owner_id, MemoryRecord.id == memory_id)
                .first()
            )
            if record is not None:
                db.expunge(record)
            return record

    def vector_candidates(self, owner_id: str, now: Optional[datetime] = None) -> list[MemoryRecord]:
        now = now or utc_now()
        with self._session() as db:
            rows = (
                self._live_filter(db.query(MemoryRecord), owner_id, now)
                .filter(MemoryRecord.embedding.isnot(None))
                .all()
            )
            db.expunge_all()
            return rows

    def lexical_candidates(
        self,
        owner_id: str,
        terms: Sequence[str],
        now: Optional[datetime] = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[MemoryRecord]:
        """One page of live records containing any of ``terms``, newest first."""
        terms = [t for t in terms if t]
        if not terms:
            return []
        now = now or utc_now()
        with self._session() as db:
            clauses = [
                MemoryRecord.content.ilike(f"%{_escape_like(term)}%", escape="\\")
                for term in terms
            ]
            rows = (
                self._live_filter(db.query(MemoryRecord), owner_id, now)
                .filter(or_(*clauses))
                .order_by(MemoryRecord.created_at.desc(), MemoryRecord.id)
                .offset(offset)
                .limit(limit)
                .all()
            )
            db.expunge_all()
            return rows

    def deactivate(self, owner_id: str, memory_id: str, now: Optional[datetime] = None) -> bool:
        with self._session() as db:
            record = (
                db.query(MemoryRecord)
                .filter(
                    MemoryRecord.owner_id == owner_id,
                    MemoryRecord.id == memory_id,
                    MemoryRecord.is_active.is_(True),
                )
                .first()
            )
            if record is None:
                return False
            record.is_active = False
            record.deactivated_at = now or utc_now()
            db.commit()
            return True

    def delete(self, owner_id: str, memory_id: str) -> bool:
        with self._session() as db:
            deleted = (
                db.query(MemoryRecord)
                .filter(MemoryRecord.owner_id == owner_id, MemoryRecord.id == memory_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted > 0

    def count(self, owner_id: str, include_inactive: bool = False) -> int:
        with self._session() as db:
            query = db.query(MemoryRecord).filter(MemoryRecord.owner_id == owner_id)
            if not include_inactive:
                query = query.filter(MemoryRecord.is_active.is_(True))
            return query.count()

    # -------------------------------------------------------------------------
    # Maintenance (not owner-scoped)
    # -------------------------------------------------------------------------

    def deactivate_expired(self, now: datetime, limit: int) -> int:
        with self._session() as db:
            ids = [
                row[0]
                for row in db.query(MemoryRecord.id)
                .filter(
                    MemoryRecord.is_active.is_(True),
                    MemoryRecord.expires_at.isnot(None),
                    MemoryRecord.expires_at <= now,
                )
                .limit(limit)
                .all()
            ]
            if not ids:
                return 0
            updated = (
                db.query(MemoryRecord)
                .filter(MemoryRecord.id.in_(ids), MemoryRecord.is_active.is_(True))
                .update(
                    {MemoryRecord.is_active: False, MemoryRecord.deactivated_at: now},
                    synchronize_session=False,
                )
            )
            db.commit()
            return updated

    def purge_inactive(self, before: datetime, limit: int) -> int:
        with self._session() as db:
            ids = [
                row[0]
                for row in db.query(MemoryRecord.id)
                .filter(
                    MemoryRecord.is_active.is_(False),
                    MemoryRecord.deactivated_at.isnot(None),
                    MemoryRecord.deactivated_at <= before,
                )
                .limit(limit)
                .all()
            ]
            if not ids:
                return 0
            deleted = (
                db.query(MemoryRecord)
                .filter(MemoryRecord.id.in_(ids))
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted

    def ping(self) -> None:
        with self._session() as db:
            db.query(MemoryRecord.id).limit(1).all()
