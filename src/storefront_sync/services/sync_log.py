"""Audit records for sync attempts."""

from datetime import datetime
from typing import Callable

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.clock import utcnow
from storefront_sync.exceptions import NotFoundError, ValidationError
from storefront_sync.infrastructure.database.models import SyncLog, SyncStatus


class SyncLogRecorder:
    """Opens and closes the ``sync_logs`` row of one sync attempt.

    Each call commits on its own, outside the batch transaction, so a failed
    batch still leaves a failed log behind.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def open(self, tenant_id: str, sync_type: str) -> str:
        """Create a running sync log and return its id."""
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                insert(SyncLog)
                .values(
                    tenant_id=tenant_id,
                    sync_type=sync_type,
                    status=SyncStatus.RUNNING.value,
                    records_synced=0,
                    retry_count=0,
                    started_at=self.clock(),
                )
                .returning(SyncLog.id)
            )
            return result.scalar_one()

    async def resume(self, tenant_id: str, sync_log_id: str) -> str:
        """Adopt a claimed retry so its redelivery closes the original log.

        The log must belong to the tenant and be ``running``, which is the state
        ``mark_retry_started`` leaves it in.
        """
        async with self.session_factory() as session:
            status = await session.scalar(
                select(SyncLog.status).where(
                    SyncLog.id == sync_log_id, SyncLog.tenant_id == tenant_id
                )
            )
        if status is None:
            raise NotFoundError("Sync log not found")
        if status != SyncStatus.RUNNING.value:
            raise ValidationError(
                "Sync log is not awaiting a retry -- claim it with mark_retry_started first"
            )
        return sync_log_id

    async def close(
        self,
        tenant_id: str,
        sync_log_id: str,
        status: SyncStatus,
        records_synced: int = 0,
        error_message: str | None = None,
    ) -> None:
        """Record the outcome of a sync attempt."""
        async with self.session_factory() as session, session.begin():
            await session.execute(
                update(SyncLog)
                .where(SyncLog.id == sync_log_id, SyncLog.tenant_id == tenant_id)
                .values(
                    status=status.value,
                    records_synced=records_synced,
                    error_message=error_message,
                    completed_at=self.clock(),
                )
                .execution_options(synchronize_session=False)
            )
