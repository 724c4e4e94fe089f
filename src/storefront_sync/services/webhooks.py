"""Single-entity webhook events from the storefront."""

from typing import Any

import structlog

from shared.constants import WEBHOOK_ACTIONS, WEBHOOK_SYNC_TYPES
from storefront_sync.exceptions import ValidationError
from storefront_sync.services.payloads import EntityKind
from storefront_sync.services.upsert_engine import UpsertEngine, UpsertResult

logger = structlog.get_logger()

RESOURCE_KINDS = {
    "order": EntityKind.ORDERS,
    "product": EntityKind.PRODUCTS,
    "customer": EntityKind.CUSTOMERS,
    "category": EntityKind.CATEGORIES,
}


class WebhookDispatcher:
    """Routes a created/updated webhook to the matching upsert as a batch of one."""

    def __init__(self, engine: UpsertEngine):
        self.engine = engine

    async def handle_webhook(
        self,
        tenant_id: str,
        resource: str,
        action: str,
        data: Any,
        retry_of: str | None = None,
    ) -> UpsertResult:
        """Upsert ``data`` as a batch of one; ``retry_of`` closes a claimed retry."""
        if resource not in RESOURCE_KINDS:
            raise ValidationError(f"Invalid resource type: {resource}")
        if action not in WEBHOOK_ACTIONS:
            raise ValidationError(f"Invalid webhook action: {action}")
        if not isinstance(data, dict):
            raise ValidationError("Webhook data must be an object")

        logger.debug(
            "Webhook received", tenant_id=tenant_id, resource=resource, action=action
        )
        return await self.engine.upsert(
            tenant_id,
            RESOURCE_KINDS[resource],
            [data],
            sync_type=WEBHOOK_SYNC_TYPES[resource],
            retry_of=retry_of,
        )
