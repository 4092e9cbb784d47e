"""
Database initialization helpers.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import core.config as config
from core.models import Base


class Database:
    """Engine plus session factory, constructed once and passed around."""

    def __init__(self, engine, session_factory):
        self.engine = engine
        self.SessionLocal = session_factory

    def dispose(self) -> None:
        self.engine.dispose()


def init_db(database_url: Optional[str] = None) -> Database:
    """Initialize database connection and create tables."""
    url = database_url or config.DATABASE_URL

    config.logger.info("Connecting to database...")
    engine_kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(url, **engine_kwargs)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    Base.metadata.create_all(engine)

    config.logger.info("Database initialized")
    return Database(engine, session_factory)
