"""Initial stocksync schema

Revision ID: stocksync_initial_001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = 'stocksync_initial_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()
    tables = set(inspect(conn).get_table_names())

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('email', sa.String(length=255), nullable=False, unique=True),
            sa.Column('name', sa.String(length=255), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )

    if 'merchant_accounts' not in tables:
        op.create_table(
            'merchant_accounts',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
            sa.Column('name', sa.Text(), nullable=False),
            sa.Column('client_id', sa.Text(), nullable=False, server_default=''),
            sa.Column('client_secret', sa.Text(), nullable=True),
            sa.Column('access_token', sa.Text(), nullable=True),
            sa.Column('refresh_token', sa.Text(), nullable=True),
            sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('refresh_error', sa.Text(), nullable=True),
            sa.Column('sync_status', sa.String(length=20), nullable=False, server_default='disconnected'),
            sa.Column('last_sync', sa.DateTime(timezone=True), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index('idx_merchant_accounts_user_id', 'merchant_accounts', ['user_id'])
        op.create_index('idx_merchant_accounts_is_active', 'merchant_accounts', ['is_active'])

    if 'products' not in tables:
        op.create_table(
            'products',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('sku', sa.String(length=120), nullable=False, unique=True),
            sa.Column('internal_code', sa.String(length=120), nullable=True),
            sa.Column('ean', sa.String(length=32), nullable=True),
            sa.Column('name', sa.Text(), nullable=False),
            sa.Column('sale_price', sa.Numeric(14, 2), nullable=False, server_default='0'),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index('idx_products_ean', 'products', ['ean'])
        op.create_index('idx_products_internal_code', 'products', ['internal_code'])

    if 'external_orders' not in tables:
        op.create_table(
            'external_orders',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('external_order_id', sa.String(length=64), nullable=False),
            sa.Column('order_number', sa.String(length=64), nullable=False),
            sa.Column('account_id', sa.String(length=36), sa.ForeignKey('merchant_accounts.id'), nullable=False),
            sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('status', sa.Text(), nullable=False),
            sa.Column('customer_name', sa.Text(), nullable=True),
            sa.Column('total_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
            sa.Column('items', sa.JSON(), nullable=False),
            sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('platform_created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint('external_order_id', 'account_id', name='uq_external_orders_order_account'),
        )
        op.create_index('idx_external_orders_account_created', 'external_orders', ['account_id', 'created_at'])
        op.create_index('idx_external_orders_status', 'external_orders', ['status'])

    if 'inventory_movements' not in tables:
        op.create_table(
            'inventory_movements',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('type', sa.String(length=10), nullable=False),
            sa.Column('product_id', sa.String(length=36), sa.ForeignKey('products.id'), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('reason', sa.Text(), nullable=True),
            sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('sync_status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('external_order_id', sa.String(length=36), sa.ForeignKey('external_orders.id'), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index('idx_inventory_movements_product_created', 'inventory_movements', ['product_id', 'created_at'])
        op.create_index('idx_inventory_movements_order', 'inventory_movements', ['external_order_id'])

    if 'product_mappings' not in tables:
        op.create_table(
            'product_mappings',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('product_id', sa.String(length=36), sa.ForeignKey('products.id'), nullable=False),
            sa.Column('account_id', sa.String(length=36), sa.ForeignKey('merchant_accounts.id'), nullable=False),
            sa.Column('external_product_id', sa.String(length=64), nullable=False),
            sa.Column('external_sku', sa.String(length=120), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint('account_id', 'external_product_id', name='uq_product_mappings_account_product'),
        )


def downgrade():
    conn = op.get_bind()
    tables = set(inspect(conn).get_table_names())

    for table in (
        'product_mappings',
        'inventory_movements',
        'external_orders',
        'products',
        'merchant_accounts',
        'users',
    ):
        if table in tables:
            op.drop_table(table)
