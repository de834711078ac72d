# authguard/app/db/session.py
"""
Async database session management for SQLAlchemy.

- asyncpg for PostgreSQL (production), aiosqlite for SQLite (local/tests)
- In-memory SQLite shares one connection (StaticPool) so every session
  sees the same database. Sessions on that connection share one
  transaction, so concurrent writers can clobber each other: use it only
  for serial scripts. Tests and local servers use a SQLite file.
- Stores receive a session factory and open one short transaction per
  operation
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, StaticPool

from authguard.app.core.config import settings


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """
    Build an engine with pool settings suited to the backend.

    SQLite file:    NullPool, check_same_thread=False
    SQLite memory:  StaticPool (single shared connection, serial use only)
    PostgreSQL:     queue pool, pre-ping, 5 minute recycle
    """
    if "sqlite" in url.lower():
        in_memory = ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:")
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool if in_memory else NullPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        url,
        echo=echo,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        # Validate connection before checkout (prevents stale connection errors)
        pool_pre_ping=True,
        pool_recycle=300,
    )


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: records are read after commit to build schemas
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine: AsyncEngine = create_engine_for(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = build_sessionmaker(engine)

