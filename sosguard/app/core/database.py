"""
Database layer — async SQLAlchemy 2.0 (aiosqlite in dev, asyncpg in production).

Provides:
    • Async engine and session factory
    • Connection pool management
    • Base model for ORM entities
    • init_db / ping_db / close_db for the app lifespan and health probe

Usage:
    from sosguard.app.core.database import Base, async_session_factory

    class AlertRecord(Base):
        __tablename__ = "sos_alerts"
        id: Mapped[str] = mapped_column(String(32), primary_key=True)

    async with async_session_factory() as session:
        result = await session.execute(select(AlertRecord))
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from sosguard.app.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    url = url or settings.DATABASE_URL
    kwargs: Dict[str, Any] = {"echo": settings.DATABASE_ECHO, "future": True}
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# ── Engine ──
engine = build_engine()

# ── Session Factory ──
async_session_factory = build_session_factory(engine)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Lifecycle ──
async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    # Registers the ORM tables on Base.metadata
    from sosguard.app.sos import orm  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def ping_db(bind: Optional[AsyncEngine] = None) -> None:
    """Round-trip a trivial query; raises on connection failure."""
    async with (bind or engine).connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db(bind: Optional[AsyncEngine] = None) -> None:
    """Dispose engine connections."""
    await (bind or engine).dispose()
    logger.info("Database connections closed")
