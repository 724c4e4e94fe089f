"""Transactional, idempotent upsert of storefront batches.

One call handles one entity kind and one batch inside one transaction:

1. Validate the batch; invalid records are skipped and counted.
2. Open a sync log.
3. Resolve every foreign reference of the batch (one query per table).
4. Upsert each record on (tenant_id, external_id). Orders additionally have
   their line items deleted and re-inserted from the payload.
5. Stamp the store's ``last_sync_at`` and commit.
6. Close the sync log as completed, or as failed when anything in steps 3-5
   raised, in which case nothing from the batch is committed.

Re-delivering the same batch converges on the same stored state, which is
what makes retries safe.
"""

import hashlib
from datetime import datetime
from typing import Any, Callable

import structlog
from sqlalchemy import delete, insert, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.clock import utcnow
from shared.constants import DEFAULT_CURRENCY, DEFAULT_PRODUCT_STATUS, DEFAULT_PRODUCT_TYPE
from storefront_sync.exceptions import SyncError, ValidationError
from storefront_sync.infrastructure.database.models import (
    Base,
    Category,
    Customer,
    Order,
    OrderItem,
    Product,
    Store,
    SyncStatus,
)
from storefront_sync.schemas import CamelModel
from storefront_sync.services.entity_validator import EntityValidator
from storefront_sync.services.id_resolver import IdResolver, ReferenceMaps
from storefront_sync.services.payloads import (
    CategoryPayload,
    CustomerPayload,
    EntityKind,
    OrderPayload,
    Payload,
    ProductPayload,
)
from storefront_sync.services.sync_log import SyncLogRecorder

logger = structlog.get_logger()

# Columns never overwritten when an existing row is merged
_CONFLICT_KEYS = ("tenant_id", "external_id")


class UpsertResult(CamelModel):
    """Outcome of one upsert call. Serialises as syncedCount/skippedCount/syncLogId."""

    synced_count: int
    skipped_count: int
    sync_log_id: str


def hash_email(email: str) -> str:
    """SHA-256 hex digest of the normalised email address."""
    return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()


class UpsertEngine:
    """Merges validated storefront records into the tenant's tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        validator: EntityValidator | None = None,
        id_resolver: IdResolver | None = None,
        recorder: SyncLogRecorder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.validator = validator or EntityValidator()
        self.id_resolver = id_resolver or IdResolver()
        self.recorder = recorder or SyncLogRecorder(session_factory, clock=clock)
        self.clock = clock

    async def upsert(
        self,
        tenant_id: str,
        kind: EntityKind | str,
        records: Any,
        sync_type: str | None = None,
        retry_of: str | None = None,
    ) -> UpsertResult:
        """
        Upsert one batch of one entity kind for a tenant.

        Args:
            tenant_id: Store id every row is scoped to
            kind: Entity kind of every record in the batch
            records: The raw batch, a list of JSON-like dicts
            sync_type: Label stored on the sync log (defaults to the kind)
            retry_of: Id of a claimed retry this batch redelivers. Its log is
                closed instead of opening a new one

        Returns:
            Synced and skipped counts plus the sync log id

        Raises:
            ValidationError: unknown kind, ``records`` is not a list
                (no sync log is created), or ``retry_of`` is not a running retry
            NotFoundError: ``retry_of`` does not exist for this tenant
            SyncError: the batch failed at the storage level and was rolled back
        """
        try:
            kind = EntityKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown entity kind: {kind}") from None
        if not isinstance(records, list):
            raise ValidationError(f"{kind.value} must be an array")

        batch = self.validator.validate(kind, records, tenant_id=tenant_id)
        if retry_of is not None:
            sync_log_id = await self.recorder.resume(tenant_id, retry_of)
        else:
            sync_log_id = await self.recorder.open(tenant_id, sync_type or kind.value)

        if not batch.valid:
            await self.recorder.close(tenant_id, sync_log_id, SyncStatus.COMPLETED, 0)
            return UpsertResult(
                synced_count=0, skipped_count=batch.skipped_count, sync_log_id=sync_log_id
            )

        try:
            synced_count = await self._apply(tenant_id, kind, batch.valid)
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
            try:
                await self.recorder.close(
                    tenant_id,
                    sync_log_id,
                    SyncStatus.FAILED,
                    0,
                    error_message=error_message,
                )
            except Exception:
                # Left running; the stale reaper fails it later
                logger.exception(
                    "Could not record failed sync",
                    tenant_id=tenant_id,
                    sync_log_id=sync_log_id,
                )
            logger.error(
                f"{kind.value.capitalize()} sync failed",
                tenant_id=tenant_id,
                sync_log_id=sync_log_id,
                error=error_message,
            )
            raise SyncError(f"Failed to upsert {kind.value}") from e

        await self.recorder.close(tenant_id, sync_log_id, SyncStatus.COMPLETED, synced_count)
        logger.info(
            f"{kind.value.capitalize()} sync completed",
            tenant_id=tenant_id,
            synced_count=synced_count,
            skipped_count=batch.skipped_count,
            sync_log_id=sync_log_id,
        )
        return UpsertResult(
            synced_count=synced_count,
            skipped_count=batch.skipped_count,
            sync_log_id=sync_log_id,
        )

    async def upsert_orders(
        self,
        tenant_id: str,
        orders: Any,
        sync_type: str = "orders",
        retry_of: str | None = None,
    ) -> UpsertResult:
        return await self.upsert(
            tenant_id, EntityKind.ORDERS, orders, sync_type, retry_of=retry_of
        )

    async def upsert_products(
        self,
        tenant_id: str,
        products: Any,
        sync_type: str = "products",
        retry_of: str | None = None,
    ) -> UpsertResult:
        return await self.upsert(
            tenant_id, EntityKind.PRODUCTS, products, sync_type, retry_of=retry_of
        )

    async def upsert_customers(
        self,
        tenant_id: str,
        customers: Any,
        sync_type: str = "customers",
        retry_of: str | None = None,
    ) -> UpsertResult:
        return await self.upsert(
            tenant_id, EntityKind.CUSTOMERS, customers, sync_type, retry_of=retry_of
        )

    async def upsert_categories(
        self,
        tenant_id: str,
        categories: Any,
        sync_type: str = "categories",
        retry_of: str | None = None,
    ) -> UpsertResult:
        return await self.upsert(
            tenant_id, EntityKind.CATEGORIES, categories, sync_type, retry_of=retry_of
        )

    # =========================================================================
    # Transaction body
    # =========================================================================

    async def _apply(
        self, tenant_id: str, kind: EntityKind, records: list[Payload]
    ) -> int:
        """Write every record in a single transaction; return the synced count."""
        synced_count = 0
        async with self.session_factory() as session, session.begin():
            refs = await self.id_resolver.resolve(session, tenant_id, records)

            for record in records:
                if kind is EntityKind.ORDERS:
                    await self._upsert_order(session, tenant_id, record, refs)
                elif kind is EntityKind.PRODUCTS:
                    await self._merge(session, Product, self._product_row(tenant_id, record, refs))
                elif kind is EntityKind.CUSTOMERS:
                    await self._merge(session, Customer, self._customer_row(tenant_id, record))
                else:
                    await self._merge(session, Category, self._category_row(tenant_id, record, refs))
                synced_count += 1

            await session.execute(
                update(Store)
                .where(Store.id == tenant_id)
                .values(last_sync_at=self.clock())
                .execution_options(synchronize_session=False)
            )
        return synced_count

    async def _merge(
        self, session: AsyncSession, model: type[Base], values: dict[str, Any]
    ) -> str:
        """INSERT ... ON CONFLICT (tenant_id, external_id) DO UPDATE; return the row id."""
        dialect = session.bind.dialect.name
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert_fn(model).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_CONFLICT_KEYS),
            set_={
                column: stmt.excluded[column]
                for column in values
                if column not in _CONFLICT_KEYS
            },
        ).returning(model.id)
        result = await session.execute(stmt)
        return result.scalar_one()

    async def _upsert_order(
        self,
        session: AsyncSession,
        tenant_id: str,
        order: OrderPayload,
        refs: ReferenceMaps,
    ) -> None:
        order_id = await self._merge(
            session,
            Order,
            {
                "tenant_id": tenant_id,
                "external_id": order.wc_order_id,
                "date_created": order.date_created,
                "date_modified": order.date_modified,
                "status": order.status,
                "total": order.total,
                "subtotal": order.subtotal,
                "tax_total": order.tax_total,
                "shipping_total": order.shipping_total,
                "discount_total": order.discount_total,
                "currency": order.currency or DEFAULT_CURRENCY,
                "customer_id": refs.resolve("customers", order.customer_id),
                "payment_method": order.payment_method,
                "coupon_used": order.coupon_used,
            },
        )
        await self._replace_order_items(session, tenant_id, order_id, order, refs)

    async def _replace_order_items(
        self,
        session: AsyncSession,
        tenant_id: str,
        order_id: str,
        order: OrderPayload,
        refs: ReferenceMaps,
    ) -> None:
        # Replace, don't merge: the stored item set always equals the latest payload
        await session.execute(
            delete(OrderItem)
            .where(OrderItem.order_id == order_id, OrderItem.tenant_id == tenant_id)
            .execution_options(synchronize_session=False)
        )
        if not order.items:
            return

        await session.execute(
            insert(OrderItem),
            [
                {
                    "order_id": order_id,
                    "tenant_id": tenant_id,
                    "product_id": refs.resolve("products", item.wc_product_id),
                    "product_name": item.product_name,
                    "sku": item.sku,
                    "quantity": item.quantity,
                    "subtotal": item.subtotal,
                    "total": item.total,
                }
                for item in order.items
            ],
        )

    # =========================================================================
    # Row builders
    # =========================================================================

    @staticmethod
    def _product_row(
        tenant_id: str, product: ProductPayload, refs: ReferenceMaps
    ) -> dict[str, Any]:
        return {
            "tenant_id": tenant_id,
            "external_id": product.wc_product_id,
            "name": product.name,
            "sku": product.sku,
            "price": product.price,
            "regular_price": product.regular_price,
            "sale_price": product.sale_price,
            "category_id": refs.resolve("categories", product.category_id),
            "category_name": product.category_name,
            "stock_quantity": product.stock_quantity,
            "stock_status": product.stock_status,
            "status": product.status or DEFAULT_PRODUCT_STATUS,
            "type": product.type or DEFAULT_PRODUCT_TYPE,
            "created_at": product.created_at,
            "updated_at": product.updated_at,
        }

    @staticmethod
    def _customer_row(tenant_id: str, customer: CustomerPayload) -> dict[str, Any]:
        return {
            "tenant_id": tenant_id,
            "external_id": customer.wc_customer_id,
            "email_hash": hash_email(customer.email) if customer.email else None,
            "display_name": customer.display_name,
            "total_spent": customer.total_spent or 0,
            "order_count": customer.order_count or 0,
            "first_order_date": customer.first_order_date,
            "last_order_date": customer.last_order_date,
            "created_at": customer.created_at,
        }

    @staticmethod
    def _category_row(
        tenant_id: str, category: CategoryPayload, refs: ReferenceMaps
    ) -> dict[str, Any]:
        return {
            "tenant_id": tenant_id,
            "external_id": category.wc_category_id,
            "name": category.name,
            "parent_id": refs.resolve("categories", category.parent_id),
            "product_count": category.product_count or 0,
        }
