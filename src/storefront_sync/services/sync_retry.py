"""Retry scheduling and stale-run recovery for failed syncs.

Sync log state machine::

    running --> completed                      (terminal)
    running --> failed --schedule_retry--> failed (next_retry_at set)
                failed --mark_retry_started--> running --> ...

``retry_count`` only ever grows and is capped at ``MAX_RETRIES``; once the cap
is reached a failed sync stays failed. Claiming a retry is a single
conditional UPDATE, so two workers racing on the same sync log produce exactly
one increment.
"""

import random
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.clock import utcnow
from shared.constants import (
    BACKOFF_JITTER_RATIO,
    BASE_BACKOFF_SECONDS,
    DUE_RETRIES_LIMIT,
    FAILED_SYNCS_LIMIT,
    MAX_BACKOFF_SECONDS,
    MAX_RETRIES,
    STALE_SYNC_THRESHOLD_MINUTES,
)
from storefront_sync.exceptions import NotFoundError, ValidationError
from storefront_sync.infrastructure.database.models import SyncLog, SyncStatus
from storefront_sync.schemas import CamelModel

logger = structlog.get_logger()


class RetryStatus(str, Enum):
    """Outcome values of :meth:`RetryScheduler.schedule_retry`."""

    RETRY_SCHEDULED = "retry_scheduled"
    MAX_RETRIES_REACHED = "max_retries_reached"


class RetrySchedule(CamelModel):
    sync_log_id: str
    status: RetryStatus
    next_retry_at: datetime | None = None


class FailedSync(CamelModel):
    """A failed sync that can still be retried."""

    id: str
    sync_type: str
    error_message: str | None
    retry_count: int
    next_retry_at: datetime | None
    started_at: datetime


def calculate_backoff(retry_count: int, rng: random.Random | None = None) -> int:
    """
    Delay in seconds before retry number ``retry_count``.

    ``retry_count`` is the value after the claim's increment. The base delay
    doubles per attempt, clamped to [BASE_BACKOFF_SECONDS, MAX_BACKOFF_SECONDS],
    then spread by +/-20% jitter so a burst of failures does not retry in
    lockstep.
    """
    base = min(max(2**retry_count * BASE_BACKOFF_SECONDS, BASE_BACKOFF_SECONDS), MAX_BACKOFF_SECONDS)
    jitter = base * BACKOFF_JITTER_RATIO * ((rng or random).random() * 2 - 1)
    return max(1, round(base + jitter))


def _failed_sync(row: SyncLog) -> FailedSync:
    return FailedSync(
        id=row.id,
        sync_type=row.sync_type,
        error_message=row.error_message,
        retry_count=row.retry_count,
        next_retry_at=row.next_retry_at,
        started_at=row.started_at,
    )


class RetryScheduler:
    """Schedules and claims retries of failed syncs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.rng = rng or random.Random()
        self.clock = clock

    async def get_failed_syncs(
        self, tenant_id: str, limit: int = FAILED_SYNCS_LIMIT
    ) -> list[FailedSync]:
        """Retryable failed syncs for a tenant, most recent first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncLog)
                .where(
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.status == SyncStatus.FAILED.value,
                    SyncLog.retry_count < MAX_RETRIES,
                )
                .order_by(SyncLog.started_at.desc())
                .limit(limit)
            )
            return [_failed_sync(row) for row in result.scalars()]

    async def schedule_retry(self, tenant_id: str, sync_log_id: str) -> RetrySchedule:
        """
        Claim a failed sync for retry and set when it becomes due.

        Args:
            tenant_id: Store the sync log must belong to
            sync_log_id: The failed sync log

        Returns:
            ``retry_scheduled`` with the due time, or ``max_retries_reached``

        Raises:
            NotFoundError: no such sync log for this tenant
            ValidationError: the sync log is not in the failed state
        """
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(SyncLog)
                .where(
                    SyncLog.id == sync_log_id,
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.status == SyncStatus.FAILED.value,
                    SyncLog.retry_count < MAX_RETRIES,
                )
                .values(retry_count=SyncLog.retry_count + 1)
                .returning(SyncLog.retry_count)
                .execution_options(synchronize_session=False)
            )
            retry_count = result.scalar_one_or_none()

            if retry_count is None:
                # Only a failed sync that is out of retries gets past this check
                await self._require_failed(session, tenant_id, sync_log_id)
                return RetrySchedule(
                    sync_log_id=sync_log_id,
                    status=RetryStatus.MAX_RETRIES_REACHED,
                    next_retry_at=None,
                )

            backoff_seconds = calculate_backoff(retry_count, self.rng)
            next_retry_at = self.clock() + timedelta(seconds=backoff_seconds)
            await session.execute(
                update(SyncLog)
                .where(SyncLog.id == sync_log_id, SyncLog.tenant_id == tenant_id)
                .values(next_retry_at=next_retry_at)
                .execution_options(synchronize_session=False)
            )

        logger.info(
            "Retry scheduled for failed sync",
            tenant_id=tenant_id,
            sync_log_id=sync_log_id,
            retry_count=retry_count,
            backoff_seconds=backoff_seconds,
            next_retry_at=next_retry_at.isoformat(),
        )
        return RetrySchedule(
            sync_log_id=sync_log_id,
            status=RetryStatus.RETRY_SCHEDULED,
            next_retry_at=next_retry_at,
        )

    async def mark_retry_started(self, tenant_id: str, sync_log_id: str) -> None:
        """Move a failed sync back to running as its retry begins executing."""
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(SyncLog)
                .where(
                    SyncLog.id == sync_log_id,
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.status == SyncStatus.FAILED.value,
                )
                .values(
                    status=SyncStatus.RUNNING.value,
                    retry_count=case(
                        (SyncLog.retry_count < MAX_RETRIES, SyncLog.retry_count + 1),
                        else_=SyncLog.retry_count,
                    ),
                    next_retry_at=None,
                    error_message=None,
                    completed_at=None,
                    started_at=self.clock(),
                )
                .returning(SyncLog.retry_count)
                .execution_options(synchronize_session=False)
            )
            retry_count = result.scalar_one_or_none()
            if retry_count is None:
                await self._require_failed(session, tenant_id, sync_log_id)

        logger.info(
            "Retry started for failed sync",
            tenant_id=tenant_id,
            sync_log_id=sync_log_id,
            retry_count=retry_count,
        )

    async def get_due_retries(
        self, tenant_id: str, limit: int = DUE_RETRIES_LIMIT
    ) -> list[FailedSync]:
        """Failed syncs whose retry time has passed, soonest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncLog)
                .where(
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.status == SyncStatus.FAILED.value,
                    SyncLog.retry_count < MAX_RETRIES,
                    SyncLog.next_retry_at <= self.clock(),
                )
                .order_by(SyncLog.next_retry_at.asc())
                .limit(limit)
            )
            return [_failed_sync(row) for row in result.scalars()]

    async def get_unscheduled_failures(self, tenant_id: str) -> list[str]:
        """Ids of retryable failed syncs that have no retry time yet."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncLog.id)
                .where(
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.status == SyncStatus.FAILED.value,
                    SyncLog.retry_count < MAX_RETRIES,
                    SyncLog.next_retry_at.is_(None),
                )
                .order_by(SyncLog.started_at.asc())
            )
            return list(result.scalars())

    async def _require_failed(
        self, session: AsyncSession, tenant_id: str, sync_log_id: str
    ) -> None:
        """Explain why a conditional update matched nothing."""
        result = await session.execute(
            select(SyncLog.status).where(
                SyncLog.id == sync_log_id, SyncLog.tenant_id == tenant_id
            )
        )
        status = result.scalar_one_or_none()
        if status is None:
            raise NotFoundError("Sync log not found")
        if status != SyncStatus.FAILED.value:
            raise ValidationError(
                "Sync log is not in failed state -- only failed syncs can be retried"
            )


class StaleRunReaper:
    """Fails syncs stuck in ``running`` so they become retryable."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        threshold_minutes: int = STALE_SYNC_THRESHOLD_MINUTES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.threshold_minutes = threshold_minutes
        self.clock = clock

    async def detect_stale_syncs(self, tenant_id: str) -> int:
        """Mark every stale running sync of a tenant as failed; return how many."""
        now = self.clock()
        threshold = now - timedelta(minutes=self.threshold_minutes)

        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(SyncLog)
                .where(
                    SyncLog.tenant_id == tenant_id,
                    SyncLog.status == SyncStatus.RUNNING.value,
                    SyncLog.started_at < threshold,
                )
                .values(
                    status=SyncStatus.FAILED.value,
                    error_message=(
                        f"Sync stalled -- exceeded {self.threshold_minutes} minute threshold"
                    ),
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            reaped = result.rowcount or 0

        if reaped > 0:
            logger.warning(
                "Stale syncs detected and marked as failed",
                tenant_id=tenant_id,
                stale_syncs_detected=reaped,
            )
        return reaped
