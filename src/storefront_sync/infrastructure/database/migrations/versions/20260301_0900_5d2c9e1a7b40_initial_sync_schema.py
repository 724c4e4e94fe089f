"""Initial sync schema

Revision ID: 5d2c9e1a7b40
Revises:
Create Date: 2026-03-01 09:00:41.204117+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5d2c9e1a7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    money = sa.Numeric(precision=12, scale=2)

    # Create stores table
    op.create_table('stores',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('store_url', sa.String(length=500), nullable=False),
    sa.Column('api_key_hash', sa.String(length=255), nullable=False),
    sa.Column('plan', sa.String(length=20), nullable=False),
    sa.Column('connected_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('last_sync_at', sa.DateTime(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('store_url')
    )

    # Create categories table
    op.create_table('categories',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('external_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('parent_id', sa.String(length=36), nullable=True),
    sa.Column('product_count', sa.Integer(), nullable=False),
    sa.ForeignKeyConstraint(['tenant_id'], ['stores.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['parent_id'], ['categories.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'external_id', name='uq_categories_tenant_external')
    )

    # Create products table
    op.create_table('products',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('external_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=500), nullable=False),
    sa.Column('sku', sa.String(length=100), nullable=True),
    sa.Column('price', money, nullable=True),
    sa.Column('regular_price', money, nullable=True),
    sa.Column('sale_price', money, nullable=True),
    sa.Column('category_id', sa.String(length=36), nullable=True),
    sa.Column('category_name', sa.String(length=255), nullable=True),
    sa.Column('stock_quantity', sa.Integer(), nullable=True),
    sa.Column('stock_status', sa.String(length=50), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('type', sa.String(length=50), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['tenant_id'], ['stores.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'external_id', name='uq_products_tenant_external')
    )
    op.create_index('ix_products_tenant_category', 'products', ['tenant_id', 'category_id'], unique=False)

    # Create customers table
    op.create_table('customers',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('external_id', sa.Integer(), nullable=False),
    sa.Column('email_hash', sa.String(length=64), nullable=True),
    sa.Column('display_name', sa.String(length=255), nullable=True),
    sa.Column('total_spent', money, nullable=False),
    sa.Column('order_count', sa.Integer(), nullable=False),
    sa.Column('first_order_date', sa.DateTime(), nullable=True),
    sa.Column('last_order_date', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['tenant_id'], ['stores.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'external_id', name='uq_customers_tenant_external')
    )

    # Create orders table
    op.create_table('orders',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('external_id', sa.Integer(), nullable=False),
    sa.Column('date_created', sa.DateTime(), nullable=False),
    sa.Column('date_modified', sa.DateTime(), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('total', money, nullable=False),
    sa.Column('subtotal', money, nullable=True),
    sa.Column('tax_total', money, nullable=True),
    sa.Column('shipping_total', money, nullable=True),
    sa.Column('discount_total', money, nullable=True),
    sa.Column('currency', sa.String(length=3), nullable=False),
    sa.Column('customer_id', sa.String(length=36), nullable=True),
    sa.Column('payment_method', sa.String(length=100), nullable=True),
    sa.Column('coupon_used', sa.String(length=100), nullable=True),
    sa.ForeignKeyConstraint(['tenant_id'], ['stores.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id', 'external_id', name='uq_orders_tenant_external')
    )
    op.create_index('ix_orders_tenant_date', 'orders', ['tenant_id', 'date_created'], unique=False)
    op.create_index('ix_orders_tenant_status', 'orders', ['tenant_id', 'status'], unique=False)

    # Create order_items table
    op.create_table('order_items',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('order_id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('product_id', sa.String(length=36), nullable=True),
    sa.Column('product_name', sa.String(length=500), nullable=True),
    sa.Column('sku', sa.String(length=100), nullable=True),
    sa.Column('quantity', sa.Integer(), nullable=False),
    sa.Column('subtotal', money, nullable=True),
    sa.Column('total', money, nullable=True),
    sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['tenant_id'], ['stores.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['product_id'], ['products.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_items_tenant_order', 'order_items', ['tenant_id', 'order_id'], unique=False)
    op.create_index('ix_order_items_product', 'order_items', ['product_id'], unique=False)

    # Create sync_logs table
    op.create_table('sync_logs',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('sync_type', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('records_synced', sa.Integer(), nullable=False),
    sa.Column('retry_count', sa.Integer(), nullable=False),
    sa.Column('next_retry_at', sa.DateTime(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('started_at', sa.DateTime(), nullable=False),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['tenant_id'], ['stores.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_logs_retry_due', 'sync_logs', ['tenant_id', 'status', 'next_retry_at'], unique=False)
    op.create_index('ix_sync_logs_tenant_started', 'sync_logs', ['tenant_id', 'started_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_sync_logs_tenant_started', table_name='sync_logs')
    op.drop_index('ix_sync_logs_retry_due', table_name='sync_logs')
    op.drop_table('sync_logs')

    op.drop_index('ix_order_items_product', table_name='order_items')
    op.drop_index('ix_order_items_tenant_order', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_tenant_status', table_name='orders')
    op.drop_index('ix_orders_tenant_date', table_name='orders')
    op.drop_table('orders')

    op.drop_table('customers')

    op.drop_index('ix_products_tenant_category', table_name='products')
    op.drop_table('products')

    op.drop_table('categories')
    op.drop_table('stores')
