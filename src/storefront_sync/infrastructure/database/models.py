"""SQLAlchemy models for synced storefront data.

Every entity table carries ``tenant_id`` and is unique on
(tenant_id, external_id), the storefront's own numeric identifier. Foreign
keys between entities are nullable: a reference the sync engine cannot
resolve is stored as NULL instead of failing the batch.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""


# Money columns come back as floats; amounts are storefront totals, not ledgers
Money = Numeric(12, 2, asdecimal=False)


# =============================================================================
# Enums
# =============================================================================


class SyncStatus(str, PyEnum):
    """Lifecycle of a single sync attempt."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Stores (tenants)
# =============================================================================


class Store(Base):
    """A connected storefront. The tenant isolation boundary."""

    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    store_url: Mapped[str] = mapped_column(String(500), unique=True, nullable=False)
    api_key_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    plan: Mapped[str] = mapped_column(String(20), default="free")
    connected_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# =============================================================================
# Catalog
# =============================================================================


class Category(Base):
    """Product category. Self-referential through ``parent_id``."""

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("categories.id")
    )
    product_count: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_categories_tenant_external"),
    )


class Product(Base):
    """Product as last reported by the storefront."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100))
    price: Mapped[Optional[float]] = mapped_column(Money)
    regular_price: Mapped[Optional[float]] = mapped_column(Money)
    sale_price: Mapped[Optional[float]] = mapped_column(Money)
    category_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("categories.id")
    )
    category_name: Mapped[Optional[str]] = mapped_column(String(255))
    stock_quantity: Mapped[Optional[int]] = mapped_column(Integer)
    stock_status: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(50), default="publish")
    type: Mapped[str] = mapped_column(String(50), default="simple")
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_products_tenant_external"),
        Index("ix_products_tenant_category", "tenant_id", "category_id"),
    )


# =============================================================================
# Customers
# =============================================================================


class Customer(Base):
    """Customer aggregate. Only a SHA-256 digest of the email is kept."""

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[int] = mapped_column(Integer, nullable=False)
    email_hash: Mapped[Optional[str]] = mapped_column(String(64))
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    total_spent: Mapped[float] = mapped_column(Money, default=0)
    order_count: Mapped[int] = mapped_column(Integer, default=0)
    first_order_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_order_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_customers_tenant_external"),
    )


# =============================================================================
# Orders
# =============================================================================


class Order(Base):
    """Order header. Line items live in ``order_items``."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date_created: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    date_modified: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    total: Mapped[float] = mapped_column(Money, nullable=False)
    subtotal: Mapped[Optional[float]] = mapped_column(Money)
    tax_total: Mapped[Optional[float]] = mapped_column(Money)
    shipping_total: Mapped[Optional[float]] = mapped_column(Money)
    discount_total: Mapped[Optional[float]] = mapped_column(Money)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    customer_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("customers.id")
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(100))
    coupon_used: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_orders_tenant_external"),
        Index("ix_orders_tenant_date", "tenant_id", "date_created"),
        Index("ix_orders_tenant_status", "tenant_id", "status"),
    )


class OrderItem(Base):
    """Order line item. Replaced wholesale on every sync of its order."""

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("products.id")
    )
    product_name: Mapped[Optional[str]] = mapped_column(String(500))
    sku: Mapped[Optional[str]] = mapped_column(String(100))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    subtotal: Mapped[Optional[float]] = mapped_column(Money)
    total: Mapped[Optional[float]] = mapped_column(Money)

    __table_args__ = (
        Index("ix_order_items_tenant_order", "tenant_id", "order_id"),
        Index("ix_order_items_product", "product_id"),
    )


# =============================================================================
# Sync Logs
# =============================================================================


class SyncLog(Base):
    """One row per sync attempt, plus its retry bookkeeping."""

    __tablename__ = "sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    sync_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncStatus.RUNNING.value
    )
    records_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_sync_logs_retry_due", "tenant_id", "status", "next_retry_at"),
        Index("ix_sync_logs_tenant_started", "tenant_id", "started_at"),
    )
