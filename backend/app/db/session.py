# backend/app/db/session.py
"""
Async database session management for SQLAlchemy.

- Uses asyncpg for PostgreSQL (production)
- Uses aiosqlite for SQLite (local development fallback)
- Pool settings differ for SQLite (no pooling) vs PostgreSQL

PostgreSQL honours the row locks (SELECT ... FOR UPDATE) the TOTP
service takes around verification. SQLite ignores them and relies on
its database-level write lock.
"""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from backend.app.core.config import settings


def _create_async_engine() -> AsyncEngine:
    """
    Create and configure the async SQLAlchemy engine.

    SQLite (local development):
    - NullPool, new connection per session
    - check_same_thread=False for async compatibility

    PostgreSQL (production):
    - pool_size=5, max_overflow=10
    - pool_pre_ping=True to detect stale connections
    - pool_recycle=300
    """
    if settings.is_sqlite:
        return create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            poolclass=NullPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Global async engine instance
# Created once at module load, reused across all requests
# ─────────────────────────────────────────────────────────────────────────────
engine: AsyncEngine = _create_async_engine()


# ─────────────────────────────────────────────────────────────────────────────
# Async session factory
#
# expire_on_commit=False: Prevents attribute access errors after commit
# autoflush=False: Explicit flush control, prevents unexpected queries
# ─────────────────────────────────────────────────────────────────────────────
AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency generator for database sessions.

    Usage in FastAPI endpoints:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...

    Note: This does NOT auto-commit. The TOTP service commits
    explicitly after each state change.
    """
    async with AsyncSessionLocal() as session:
        yield session
