"""
database.py — SQLAlchemy 2.0 async engine and session factory.

This module owns ALL database connection infrastructure.
Nothing else in the codebase creates engines or sessions directly.

Usage in routes (via dependency injection):
    from eos_api.database import get_db
    async def my_route(db: AsyncSession = Depends(get_db)): ...

Usage in the sweep / queue processor (one transaction per item):
    factory = Depends(get_session_factory)
    async with factory() as session, session.begin(): ...
"""
from collections.abc import AsyncGenerator

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from eos_api.config import settings


# ---------------------------------------------------------------------------
# Declarative base: ALL ORM models inherit from this
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base.
    All ORM models in eos_api/models/ inherit from Base.
    Defined here (not in models/) to prevent circular imports in alembic/env.py.
    """
    pass


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Async engine: one per application lifetime
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,      # Logs SQL statements in debug mode
    pool_size=5,              # Core connection pool size
    max_overflow=10,          # Extra connections under peak load
    pool_pre_ping=True,       # Detect and discard stale connections before each use
)

# ---------------------------------------------------------------------------
# Session factory: produces AsyncSession instances
# ---------------------------------------------------------------------------
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,   # Keep objects usable after commit without re-querying
)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an AsyncSession per request.

    Automatically commits on success or rolls back on exception.
    Always closes the session after the request (via async context manager).
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    FastAPI dependency returning the session factory itself.

    Batch endpoints (payout sweep, withdrawal queue) open one short transaction
    per item so a failure on one row never rolls back the others.
    """
    return AsyncSessionLocal
