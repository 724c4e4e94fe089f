"""Per-tenant sync health summary."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.constants import RECENT_SYNCS_LIMIT
from storefront_sync.infrastructure.database.models import (
    Category,
    Customer,
    Order,
    Product,
    Store,
    SyncLog,
)
from storefront_sync.schemas import CamelModel

COUNTED_MODELS = {
    "orders": Order,
    "products": Product,
    "customers": Customer,
    "categories": Category,
}


class RecentSync(CamelModel):
    id: str
    sync_type: str
    records_synced: int
    status: str
    started_at: datetime
    completed_at: datetime | None
    error_message: str | None


class SyncStatusReport(CamelModel):
    last_sync_at: datetime | None
    record_counts: dict[str, int]
    recent_syncs: list[RecentSync]


class SyncStatusService:
    """Read-only view of what has been synced for a tenant."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_sync_status(
        self, tenant_id: str, recent_limit: int = RECENT_SYNCS_LIMIT
    ) -> SyncStatusReport:
        async with self.session_factory() as session:
            last_sync_at = await session.scalar(
                select(Store.last_sync_at).where(Store.id == tenant_id)
            )

            record_counts = {}
            for name, model in COUNTED_MODELS.items():
                count = await session.scalar(
                    select(func.count()).select_from(model).where(model.tenant_id == tenant_id)
                )
                record_counts[name] = int(count or 0)

            result = await session.execute(
                select(SyncLog)
                .where(SyncLog.tenant_id == tenant_id)
                .order_by(SyncLog.started_at.desc())
                .limit(recent_limit)
            )
            recent_syncs = [
                RecentSync(
                    id=log.id,
                    sync_type=log.sync_type,
                    records_synced=log.records_synced,
                    status=log.status,
                    started_at=log.started_at,
                    completed_at=log.completed_at,
                    error_message=log.error_message,
                )
                for log in result.scalars()
            ]

        return SyncStatusReport(
            last_sync_at=last_sync_at,
            record_counts=record_counts,
            recent_syncs=recent_syncs,
        )
