"""Unit tests for retry scheduling with capped exponential backoff."""

import asyncio
import random
from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from shared.constants import MAX_BACKOFF_SECONDS, MAX_RETRIES
from storefront_sync.exceptions import NotFoundError, ValidationError
from storefront_sync.infrastructure.database.models import Base, SyncStatus
from storefront_sync.services.sync_retry import (
    RetrySchedule,
    RetryScheduler,
    RetryStatus,
    calculate_backoff,
)


@pytest.fixture
def scheduler(session_factory, rng, clock) -> RetryScheduler:
    return RetryScheduler(session_factory, rng=rng, clock=clock)


class TestCalculateBackoff:
    """Tests for the backoff curve and its jitter band."""

    @pytest.mark.parametrize(
        "retry_count,base",
        [(0, 30), (1, 60), (2, 120), (3, 240), (4, 480), (5, 900), (9, 900)],
    )
    def test_within_jitter_band(self, retry_count: int, base: int) -> None:
        rng = random.Random(retry_count)
        for _ in range(200):
            delay = calculate_backoff(retry_count, rng)
            assert base * 0.8 - 1 <= delay <= base * 1.2 + 1

    def test_never_exceeds_cap_with_jitter(self) -> None:
        rng = random.Random(7)
        delays = [calculate_backoff(n, rng) for n in range(1, 20) for _ in range(50)]
        assert max(delays) <= MAX_BACKOFF_SECONDS * 1.2
        assert min(delays) >= 1

    def test_jitter_extremes(self) -> None:
        class Fixed(random.Random):
            def __init__(self, value: float):
                super().__init__()
                self.value = value

            def random(self) -> float:
                return self.value

        assert calculate_backoff(5, Fixed(0.0)) == 720
        assert calculate_backoff(5, Fixed(0.5)) == 900
        assert calculate_backoff(1, Fixed(0.0)) == 48

    def test_deterministic_with_seeded_rng(self) -> None:
        first = [calculate_backoff(3, random.Random(42)) for _ in range(3)]
        assert len(set(first)) == 1


class TestScheduleRetry:
    @pytest.mark.asyncio
    async def test_fourth_retry_hits_the_cap(
        self, scheduler: RetryScheduler, clock, tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(tenant_id, retry_count=4)

        schedule = await scheduler.schedule_retry(tenant_id, sync_log_id)

        assert schedule.status is RetryStatus.RETRY_SCHEDULED
        log = await load_sync_log(sync_log_id)
        assert log.retry_count == 5
        assert log.status == "failed"
        assert log.next_retry_at == schedule.next_retry_at
        delay = log.next_retry_at - clock()
        assert timedelta(seconds=720) <= delay <= timedelta(seconds=1080)

    @pytest.mark.asyncio
    async def test_first_retry_delay(
        self, scheduler: RetryScheduler, clock, tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(tenant_id)

        schedule = await scheduler.schedule_retry(tenant_id, sync_log_id)

        log = await load_sync_log(sync_log_id)
        assert log.retry_count == 1
        delay = schedule.next_retry_at - clock()
        assert timedelta(seconds=48) <= delay <= timedelta(seconds=72)

    @pytest.mark.asyncio
    async def test_exhausted_sync_is_not_rescheduled(
        self, scheduler: RetryScheduler, tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(tenant_id, retry_count=MAX_RETRIES)

        schedule = await scheduler.schedule_retry(tenant_id, sync_log_id)

        assert schedule.status is RetryStatus.MAX_RETRIES_REACHED
        assert schedule.next_retry_at is None
        log = await load_sync_log(sync_log_id)
        assert log.retry_count == MAX_RETRIES
        assert log.next_retry_at is None

    @pytest.mark.asyncio
    async def test_unknown_sync_log(self, scheduler: RetryScheduler, tenant_id) -> None:
        with pytest.raises(NotFoundError, match="Sync log not found"):
            await scheduler.schedule_retry(tenant_id, "missing")

    @pytest.mark.asyncio
    async def test_other_tenants_log_is_not_found(
        self, scheduler: RetryScheduler, tenant_id, other_tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(other_tenant_id)

        with pytest.raises(NotFoundError):
            await scheduler.schedule_retry(tenant_id, sync_log_id)
        assert (await load_sync_log(sync_log_id)).retry_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [SyncStatus.RUNNING, SyncStatus.COMPLETED])
    async def test_only_failed_syncs_are_retryable(
        self, scheduler: RetryScheduler, tenant_id, make_sync_log, load_sync_log, status
    ) -> None:
        sync_log_id = await make_sync_log(tenant_id, status=status)

        with pytest.raises(ValidationError, match="not in failed state"):
            await scheduler.schedule_retry(tenant_id, sync_log_id)
        assert (await load_sync_log(sync_log_id)).retry_count == 0

    def test_schedule_serializes_camel_case(self) -> None:
        dumped = RetrySchedule(
            sync_log_id="abc", status=RetryStatus.MAX_RETRIES_REACHED
        ).model_dump(by_alias=True, mode="json")
        assert dumped == {
            "syncLogId": "abc",
            "status": "max_retries_reached",
            "nextRetryAt": None,
        }


class TestMarkRetryStarted:
    @pytest.mark.asyncio
    async def test_moves_failed_sync_back_to_running(
        self, scheduler: RetryScheduler, clock, tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(
            tenant_id, retry_count=1, next_retry_at=clock() - timedelta(seconds=5)
        )
        clock.advance(minutes=2)

        await scheduler.mark_retry_started(tenant_id, sync_log_id)

        log = await load_sync_log(sync_log_id)
        assert log.status == "running"
        assert log.retry_count == 2
        assert log.next_retry_at is None
        assert log.error_message is None
        assert log.completed_at is None
        assert log.started_at == clock()

    @pytest.mark.asyncio
    async def test_never_exceeds_max_retries(
        self, scheduler: RetryScheduler, tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(tenant_id, retry_count=MAX_RETRIES)

        await scheduler.mark_retry_started(tenant_id, sync_log_id)

        assert (await load_sync_log(sync_log_id)).retry_count == MAX_RETRIES

    @pytest.mark.asyncio
    async def test_rejects_running_sync(
        self, scheduler: RetryScheduler, tenant_id, make_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(tenant_id, status=SyncStatus.RUNNING)
        with pytest.raises(ValidationError):
            await scheduler.mark_retry_started(tenant_id, sync_log_id)

    @pytest.mark.asyncio
    async def test_unknown_sync_log(self, scheduler: RetryScheduler, tenant_id) -> None:
        with pytest.raises(NotFoundError):
            await scheduler.mark_retry_started(tenant_id, "missing")


class TestListings:
    @pytest.mark.asyncio
    async def test_due_retries_soonest_first(
        self, scheduler: RetryScheduler, clock, tenant_id, make_sync_log
    ) -> None:
        now = clock()
        later_due = await make_sync_log(tenant_id, next_retry_at=now - timedelta(seconds=10))
        sooner_due = await make_sync_log(tenant_id, next_retry_at=now - timedelta(minutes=5))
        await make_sync_log(tenant_id, next_retry_at=now + timedelta(minutes=1))
        await make_sync_log(tenant_id, next_retry_at=None)
        await make_sync_log(
            tenant_id, retry_count=MAX_RETRIES, next_retry_at=now - timedelta(minutes=1)
        )
        await make_sync_log(
            tenant_id, status=SyncStatus.RUNNING, next_retry_at=now - timedelta(minutes=1)
        )

        due = await scheduler.get_due_retries(tenant_id)

        assert [d.id for d in due] == [sooner_due, later_due]

    @pytest.mark.asyncio
    async def test_due_retries_respects_limit(
        self, scheduler: RetryScheduler, clock, tenant_id, make_sync_log
    ) -> None:
        for minutes in range(1, 5):
            await make_sync_log(tenant_id, next_retry_at=clock() - timedelta(minutes=minutes))

        assert len(await scheduler.get_due_retries(tenant_id, limit=3)) == 3

    @pytest.mark.asyncio
    async def test_failed_syncs_newest_first(
        self, scheduler: RetryScheduler, clock, tenant_id, other_tenant_id, make_sync_log
    ) -> None:
        now = clock()
        older = await make_sync_log(tenant_id, started_at=now - timedelta(hours=2))
        newer = await make_sync_log(tenant_id, started_at=now - timedelta(hours=1))
        await make_sync_log(tenant_id, retry_count=MAX_RETRIES)
        await make_sync_log(tenant_id, status=SyncStatus.COMPLETED)
        await make_sync_log(other_tenant_id)

        failed = await scheduler.get_failed_syncs(tenant_id)

        assert [f.id for f in failed] == [newer, older]
        assert failed[0].error_message == "boom"
        assert failed[0].sync_type == "orders"

    @pytest.mark.asyncio
    async def test_unscheduled_failures(
        self, scheduler: RetryScheduler, clock, tenant_id, make_sync_log
    ) -> None:
        unscheduled = await make_sync_log(tenant_id)
        await make_sync_log(tenant_id, next_retry_at=clock())
        await make_sync_log(tenant_id, retry_count=MAX_RETRIES)

        assert await scheduler.get_unscheduled_failures(tenant_id) == [unscheduled]


class TestConcurrentClaims:
    """Claims racing on separate connections to one database file."""

    @pytest_asyncio.fixture
    async def db_engine(self, tmp_path) -> AsyncGenerator[AsyncEngine, None]:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}", poolclass=NullPool
        )

        # Take the write lock up front so concurrent writers queue on the busy timeout
        @event.listens_for(engine.sync_engine, "connect")
        def do_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield engine
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_racing_claims_increment_once(
        self, session_factory, clock, tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(tenant_id, retry_count=MAX_RETRIES - 1)
        schedulers = [
            RetryScheduler(session_factory, rng=random.Random(seed), clock=clock)
            for seed in range(4)
        ]

        schedules = await asyncio.gather(
            *(s.schedule_retry(tenant_id, sync_log_id) for s in schedulers)
        )

        statuses = [schedule.status for schedule in schedules]
        assert statuses.count(RetryStatus.RETRY_SCHEDULED) == 1
        assert statuses.count(RetryStatus.MAX_RETRIES_REACHED) == 3
        assert (await load_sync_log(sync_log_id)).retry_count == MAX_RETRIES

    @pytest.mark.asyncio
    async def test_racing_claims_lose_no_increments(
        self, session_factory, clock, tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_id = await make_sync_log(tenant_id)
        schedulers = [
            RetryScheduler(session_factory, rng=random.Random(seed), clock=clock)
            for seed in range(3)
        ]

        schedules = await asyncio.gather(
            *(s.schedule_retry(tenant_id, sync_log_id) for s in schedulers)
        )

        assert all(s.status is RetryStatus.RETRY_SCHEDULED for s in schedules)
        assert (await load_sync_log(sync_log_id)).retry_count == 3

    @pytest.mark.asyncio
    async def test_start_racing_schedule_stays_within_max_retries(
        self, session_factory, clock, tenant_id, make_sync_log, load_sync_log
    ) -> None:
        sync_log_ids = [
            await make_sync_log(tenant_id, retry_count=MAX_RETRIES - 1) for _ in range(5)
        ]
        starter = RetryScheduler(session_factory, clock=clock)
        planner = RetryScheduler(session_factory, rng=random.Random(5), clock=clock)

        results = await asyncio.gather(
            *(
                call
                for sync_log_id in sync_log_ids
                for call in (
                    starter.mark_retry_started(tenant_id, sync_log_id),
                    planner.schedule_retry(tenant_id, sync_log_id),
                )
            ),
            return_exceptions=True,
        )

        for result in results:
            # Losing schedule_retry finds the log already running
            assert result is None or isinstance(result, (RetrySchedule, ValidationError))
        for sync_log_id in sync_log_ids:
            log = await load_sync_log(sync_log_id)
            assert log.retry_count == MAX_RETRIES
            assert log.status == "running"
