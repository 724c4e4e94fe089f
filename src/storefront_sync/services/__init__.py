"""Sync engine services."""

from storefront_sync.services.entity_validator import EntityValidator
from storefront_sync.services.id_resolver import IdResolver
from storefront_sync.services.payloads import EntityKind
from storefront_sync.services.recovery import RecoveryCoordinator
from storefront_sync.services.sync_log import SyncLogRecorder
from storefront_sync.services.sync_retry import (
    RetryScheduler,
    StaleRunReaper,
    calculate_backoff,
)
from storefront_sync.services.sync_status import SyncStatusService
from storefront_sync.services.upsert_engine import UpsertEngine, hash_email
from storefront_sync.services.webhooks import WebhookDispatcher

__all__ = [
    "EntityKind",
    "EntityValidator",
    "IdResolver",
    "RecoveryCoordinator",
    "RetryScheduler",
    "StaleRunReaper",
    "SyncLogRecorder",
    "SyncStatusService",
    "UpsertEngine",
    "WebhookDispatcher",
    "calculate_backoff",
    "hash_email",
]
