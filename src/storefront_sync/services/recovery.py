"""Periodic recovery pass over every connected store.

A pass has two halves, run on separate schedules:

- ``recover_stale_syncs`` fails runs that stopped reporting and gives every
  retryable failure a ``next_retry_at``.
- ``dispatch_due_retries`` claims the failures whose retry time has passed.
  Claimed syncs are reported back so the storefront can be asked to redeliver
  that entity kind. The redelivered batch goes through the upsert engine with
  ``retry_of`` set to the reported ``sync_log_id``, which closes the claimed
  log as completed or failed.
"""

from dataclasses import asdict, dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.constants import DUE_RETRIES_LIMIT
from storefront_sync.exceptions import AppError
from storefront_sync.infrastructure.database.models import Store
from storefront_sync.services.sync_retry import (
    RetryScheduler,
    RetryStatus,
    StaleRunReaper,
)

logger = structlog.get_logger()


@dataclass
class StaleRecoverySummary:
    stores_checked: int = 0
    stale_syncs_detected: int = 0
    retries_scheduled: int = 0
    max_retries_reached: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DispatchSummary:
    stores_checked: int = 0
    retries_started: list[dict] = field(default_factory=list)
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class RecoveryCoordinator:
    """Runs the reaper and the retry scheduler across tenants."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: RetryScheduler | None = None,
        reaper: StaleRunReaper | None = None,
    ):
        self.session_factory = session_factory
        self.scheduler = scheduler or RetryScheduler(session_factory)
        self.reaper = reaper or StaleRunReaper(session_factory)

    async def active_tenant_ids(self) -> list[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Store.id).where(Store.is_active.is_(True)).order_by(Store.connected_at)
            )
            return list(result.scalars())

    async def _tenants(self, tenant_id: str | None) -> list[str]:
        if tenant_id is not None:
            return [tenant_id]
        return await self.active_tenant_ids()

    async def recover_stale_syncs(self, tenant_id: str | None = None) -> StaleRecoverySummary:
        """
        Fail stale runs and schedule retries for unscheduled failures.

        Args:
            tenant_id: Limit the pass to one store; all active stores if None

        Returns:
            Counts of what the pass changed
        """
        summary = StaleRecoverySummary()

        for tenant in await self._tenants(tenant_id):
            summary.stores_checked += 1
            summary.stale_syncs_detected += await self.reaper.detect_stale_syncs(tenant)

            for sync_log_id in await self.scheduler.get_unscheduled_failures(tenant):
                try:
                    schedule = await self.scheduler.schedule_retry(tenant, sync_log_id)
                except AppError as e:
                    # Another worker moved the log on between listing and claiming
                    summary.errors += 1
                    logger.warning(
                        "Could not schedule retry",
                        tenant_id=tenant,
                        sync_log_id=sync_log_id,
                        error=e.message,
                    )
                    continue

                if schedule.status is RetryStatus.RETRY_SCHEDULED:
                    summary.retries_scheduled += 1
                else:
                    summary.max_retries_reached += 1

        logger.info("Stale sync recovery completed", **summary.to_dict())
        return summary

    async def dispatch_due_retries(
        self, tenant_id: str | None = None, batch_size: int = DUE_RETRIES_LIMIT
    ) -> DispatchSummary:
        """Claim every due retry and report which syncs must be redelivered."""
        summary = DispatchSummary()

        for tenant in await self._tenants(tenant_id):
            summary.stores_checked += 1
            for failed in await self.scheduler.get_due_retries(tenant, limit=batch_size):
                try:
                    await self.scheduler.mark_retry_started(tenant, failed.id)
                except AppError as e:
                    summary.errors += 1
                    logger.warning(
                        "Could not start retry",
                        tenant_id=tenant,
                        sync_log_id=failed.id,
                        error=e.message,
                    )
                    continue

                summary.retries_started.append(
                    {
                        "tenant_id": tenant,
                        "sync_log_id": failed.id,
                        "sync_type": failed.sync_type,
                    }
                )

        logger.info(
            "Due retries dispatched",
            stores_checked=summary.stores_checked,
            retries_started=len(summary.retries_started),
            errors=summary.errors,
        )
        return summary
