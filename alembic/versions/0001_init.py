"""orders, subscriptions and store profiles

Revision ID: 0001_init
Revises:
Create Date: 2025-01-06

"""
from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('images', sa.JSON, nullable=False),
        # NULL stock means the product is not stock-managed
        sa.Column('stock', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_number', sa.String(20), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('shipping_address', sa.JSON, nullable=False),
        sa.Column('billing_address', sa.JSON, nullable=True),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('order_status', sa.String(20), nullable=False),
        sa.Column('receipt_id', sa.String(100), nullable=True),
        sa.Column('payment_id', sa.String(100), nullable=True),
        sa.Column('payment_signature', sa.String(255), nullable=True),
        sa.Column('paid_at', sa.DateTime, nullable=True),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('discount', sa.Numeric(10, 2), nullable=False),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('estimated_delivery', sa.DateTime, nullable=True),
        sa.Column('actual_delivery', sa.DateTime, nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('inventory_released', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_order_status', 'orders', ['order_status'])
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('image', sa.String(500), nullable=True),
    )
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])
    op.create_table(
        'order_status_events',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('note', sa.Text, nullable=True),
        sa.Column('timestamp', sa.DateTime, nullable=False),
    )
    op.create_index('ix_order_status_events_order_id', 'order_status_events', ['order_id'])
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('customer_first_name', sa.String(100), nullable=False),
        sa.Column('customer_last_name', sa.String(100), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(50), nullable=False),
        sa.Column('customer_address', sa.String(500), nullable=False),
        sa.Column('customer_city', sa.String(100), nullable=False),
        sa.Column('customer_state', sa.String(100), nullable=False),
        sa.Column('customer_zip_code', sa.String(20), nullable=False),
        sa.Column('customer_country', sa.String(100), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('start_date', sa.DateTime, nullable=False),
        sa.Column('end_date', sa.DateTime, nullable=False),
        sa.Column('next_delivery_date', sa.DateTime, nullable=False),
        sa.Column('last_delivery_date', sa.DateTime, nullable=True),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('delivery_instructions', sa.Text, nullable=True),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_subscriptions_customer_email', 'subscriptions', ['customer_email'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_type', 'subscriptions', ['type'])
    op.create_index('ix_subscriptions_next_delivery_date', 'subscriptions', ['next_delivery_date'])
    op.create_table(
        'subscription_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('subscription_id', sa.Integer, sa.ForeignKey('subscriptions.id'), nullable=False),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
    )
    op.create_table(
        'store_profiles',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_store_profiles_is_active', 'store_profiles', ['is_active'])


def downgrade() -> None:
    op.drop_table('store_profiles')
    op.drop_table('subscription_items')
    op.drop_table('subscriptions')
    op.drop_table('order_status_events')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')
