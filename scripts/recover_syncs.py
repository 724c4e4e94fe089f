#!/usr/bin/env python3
"""CLI script to run one sync recovery pass (stale detection, retry scheduling, dispatch)."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from storefront_sync.config import get_settings
from storefront_sync.infrastructure.database.connection import session_factory_scope
from storefront_sync.logging_setup import configure_logging
from storefront_sync.services.recovery import RecoveryCoordinator
from storefront_sync.services.sync_retry import RetryScheduler, StaleRunReaper

logger = structlog.get_logger()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a sync recovery pass")
    parser.add_argument("--tenant", help="Store id to recover (default: all active stores)")
    parser.add_argument(
        "--skip-dispatch",
        action="store_true",
        help="Only detect stale syncs and schedule retries",
    )
    return parser.parse_args()


async def main(tenant_id: str | None, skip_dispatch: bool) -> None:
    """Main recovery function."""
    settings = get_settings()
    logger.info("Starting sync recovery", tenant_id=tenant_id)

    async with session_factory_scope(settings) as session_factory:
        coordinator = RecoveryCoordinator(
            session_factory,
            scheduler=RetryScheduler(session_factory),
            reaper=StaleRunReaper(
                session_factory, threshold_minutes=settings.stale_sync_threshold_minutes
            ),
        )
        recovered = await coordinator.recover_stale_syncs(tenant_id)
        logger.info("Recovery pass completed", **recovered.to_dict())

        if not skip_dispatch:
            dispatched = await coordinator.dispatch_due_retries(
                tenant_id, batch_size=settings.due_retries_batch_size
            )
            for claimed in dispatched.retries_started:
                logger.info("Redelivery required", **claimed)

    logger.info("All operations completed successfully")


if __name__ == "__main__":
    args = parse_args()
    configure_logging()
    asyncio.run(main(args.tenant, args.skip_dispatch))
