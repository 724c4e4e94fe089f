"""Sync recovery tasks."""

import asyncio

import structlog
from celery import shared_task

from storefront_sync.config import get_settings
from storefront_sync.infrastructure.database.connection import session_factory_scope
from storefront_sync.services.recovery import RecoveryCoordinator
from storefront_sync.services.sync_retry import RetryScheduler, StaleRunReaper

logger = structlog.get_logger()


async def _recover_stale_syncs(tenant_id: str | None) -> dict:
    settings = get_settings()
    async with session_factory_scope(settings) as session_factory:
        coordinator = RecoveryCoordinator(
            session_factory,
            scheduler=RetryScheduler(session_factory),
            reaper=StaleRunReaper(
                session_factory, threshold_minutes=settings.stale_sync_threshold_minutes
            ),
        )
        summary = await coordinator.recover_stale_syncs(tenant_id)
    return summary.to_dict()


async def _dispatch_due_retries(tenant_id: str | None) -> dict:
    settings = get_settings()
    async with session_factory_scope(settings) as session_factory:
        coordinator = RecoveryCoordinator(session_factory)
        summary = await coordinator.dispatch_due_retries(
            tenant_id, batch_size=settings.due_retries_batch_size
        )
    return summary.to_dict()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def recover_stale_syncs(self, tenant_id: str | None = None) -> dict:
    """
    Fail stalled sync runs and schedule retries for failed syncs.

    This task:
    1. Marks running syncs older than the stale threshold as failed
    2. Schedules a backoff retry for every failed sync without one

    Args:
        tenant_id: Limit the pass to one store (all active stores if omitted)

    Returns:
        dict: Summary of the recovery pass
    """
    logger.info("Starting stale sync recovery", tenant_id=tenant_id)
    try:
        return asyncio.run(_recover_stale_syncs(tenant_id))
    except Exception as e:
        logger.error("Stale sync recovery failed", error=str(e))
        raise self.retry(exc=e)


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def dispatch_due_retries(self, tenant_id: str | None = None) -> dict:
    """
    Claim failed syncs whose retry time has passed.

    Returns:
        dict: Stores checked, claimed retries (tenant, sync log, sync type)
            and errors
    """
    logger.info("Dispatching due sync retries", tenant_id=tenant_id)
    try:
        return asyncio.run(_dispatch_due_retries(tenant_id))
    except Exception as e:
        logger.error("Retry dispatch failed", error=str(e))
        raise self.retry(exc=e)
