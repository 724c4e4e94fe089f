"""Pytest configuration and fixtures."""

import random
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront_sync.config import Settings
from storefront_sync.infrastructure.database.connection import get_async_session_factory
from storefront_sync.infrastructure.database.models import Base, Store, SyncLog, SyncStatus

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=True,
        postgres_host="localhost",
        postgres_port=5432,
        postgres_user="test",
        postgres_password="test",
        postgres_db="test_db",
        redis_host="localhost",
        redis_port=6379,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def rng() -> random.Random:
    """Seeded jitter source."""
    return random.Random(1234)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_async_session_factory(db_engine)


async def _create_store(
    session_factory: async_sessionmaker[AsyncSession],
    store_url: str = "https://shop.example.com",
    is_active: bool = True,
) -> str:
    async with session_factory() as session, session.begin():
        result = await session.execute(
            insert(Store)
            .values(store_url=store_url, api_key_hash="hash", is_active=is_active)
            .returning(Store.id)
        )
        return result.scalar_one()


async def _create_sync_log(
    session_factory: async_sessionmaker[AsyncSession],
    tenant_id: str,
    status: SyncStatus = SyncStatus.FAILED,
    sync_type: str = "orders",
    retry_count: int = 0,
    started_at: datetime = FIXED_NOW,
    next_retry_at: datetime | None = None,
    error_message: str | None = "boom",
) -> str:
    async with session_factory() as session, session.begin():
        result = await session.execute(
            insert(SyncLog)
            .values(
                tenant_id=tenant_id,
                sync_type=sync_type,
                status=status.value,
                records_synced=0,
                retry_count=retry_count,
                started_at=started_at,
                next_retry_at=next_retry_at,
                error_message=error_message,
            )
            .returning(SyncLog.id)
        )
        return result.scalar_one()


async def _get_sync_log(
    session_factory: async_sessionmaker[AsyncSession], sync_log_id: str
) -> SyncLog:
    async with session_factory() as session:
        return await session.get(SyncLog, sync_log_id)


@pytest.fixture
def make_store(session_factory: async_sessionmaker[AsyncSession]):
    """Factory for extra stores: ``await make_store(store_url=..., is_active=...)``."""

    async def factory(**kwargs) -> str:
        return await _create_store(session_factory, **kwargs)

    return factory


@pytest.fixture
def make_sync_log(session_factory: async_sessionmaker[AsyncSession]):
    """Factory for sync log rows in any state."""

    async def factory(tenant_id: str, **kwargs) -> str:
        return await _create_sync_log(session_factory, tenant_id, **kwargs)

    return factory


@pytest.fixture
def load_sync_log(session_factory: async_sessionmaker[AsyncSession]):
    async def loader(sync_log_id: str) -> SyncLog:
        return await _get_sync_log(session_factory, sync_log_id)

    return loader


@pytest_asyncio.fixture
async def tenant_id(session_factory: async_sessionmaker[AsyncSession]) -> str:
    """A connected store to sync into."""
    return await _create_store(session_factory)


@pytest_asyncio.fixture
async def other_tenant_id(session_factory: async_sessionmaker[AsyncSession]) -> str:
    return await _create_store(session_factory, store_url="https://other.example.com")


@pytest.fixture
def sample_order() -> dict:
    """Sample order payload as the storefront plugin sends it."""
    return {
        "wc_order_id": 1001,
        "date_created": "2026-02-20T10:15:00Z",
        "status": "processing",
        "total": 59.5,
        "subtotal": 50.0,
        "tax_total": 4.5,
        "shipping_total": 5.0,
        "currency": "EUR",
        "customer_id": 0,
        "payment_method": "stripe",
        "items": [
            {
                "wc_product_id": 0,
                "product_name": "Mug",
                "sku": "MUG-1",
                "quantity": 2,
                "subtotal": 20.0,
                "total": 20.0,
            },
            {
                "wc_product_id": 0,
                "product_name": "Poster",
                "sku": "POS-1",
                "quantity": 1,
                "subtotal": 30.0,
                "total": 30.0,
            },
        ],
    }
