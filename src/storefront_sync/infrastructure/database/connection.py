"""Database connection management.

Engine components never reach for a global session: they are handed an
``async_sessionmaker`` and open one session per unit of work. Entry points
(worker tasks, scripts) build that factory with :func:`session_factory_scope`.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from storefront_sync.config import Settings, get_settings


def get_async_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create async database engine with connection pooling.

    Every connection runs with a server-side ``statement_timeout`` so a hung
    query cannot keep a sync transaction open forever.
    """
    settings = settings or get_settings()
    connect_args: dict[str, Any] = {
        "server_settings": {
            "statement_timeout": str(settings.db_statement_timeout_ms),
            "application_name": settings.app_name,
        }
    }
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
        connect_args=connect_args,
    )


def get_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_factory_scope(
    settings: Settings | None = None,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Yield a session factory whose engine is disposed on exit.

    Celery tasks run each job in a fresh event loop, so the engine (and its
    asyncpg pool) must not outlive the job that created it.
    """
    engine = get_async_engine(settings)
    try:
        yield get_async_session_factory(engine)
    finally:
        await engine.dispose()
