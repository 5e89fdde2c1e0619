"""
Database Connection

Async SQLAlchemy engine and session management for the BidVet store.
"""

from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
from sqlalchemy.pool import NullPool

from config.settings import settings


# Created on first use so importing models never opens a connection
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine."""
    global _engine

    if _engine is None:
        kwargs = {"echo": settings.database_echo}
        if settings.database_url.startswith("postgresql"):
            # Worker and API processes are short-lived; keep no idle connections
            kwargs["poolclass"] = NullPool
        _engine = create_async_engine(settings.database_url, **kwargs)

    return _engine


def get_session_factory() -> async_sessionmaker:
    """Get or create the session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database sessions.

    Services commit their own units of work; this only scopes the session.

    Usage:
        @router.get("/projects/{project_id}/leveling")
        async def get_leveling(db: AsyncSession = Depends(get_db)):
            ...
    """
    factory = get_session_factory()
    async with factory() as session:
        yield session


async def init_db():
    """
    Create all tables.

    Note: In production, use Alembic migrations instead.
    """
    from database.models import Base

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Dispose of the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None


@asynccontextmanager
async def get_db_context():
    """
    Context manager for sessions used outside a request (workers, scripts).

    Usage:
        async with get_db_context() as db:
            await analyze_project(db, project_id, crew)
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
