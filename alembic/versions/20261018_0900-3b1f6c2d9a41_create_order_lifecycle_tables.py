"""create_order_lifecycle_tables

Revision ID: 3b1f6c2d9a41
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b1f6c2d9a41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('buyer_id', sa.String(length=64), nullable=False, comment='Buyer user id'),
        sa.Column('seller_id', sa.String(length=64), nullable=False, comment='Seller user id'),
        sa.Column('book_id', sa.String(length=64), nullable=True, comment='Listed book id'),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='pending_commit', comment='Order status'),
        sa.Column('delivery_status', sa.String(length=50), nullable=True, comment='Courier-facing delivery status'),
        sa.Column('total_amount', sa.BigInteger(), nullable=False, comment='Order total in minor units'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='ZAR', comment='ISO-4217 currency'),
        sa.Column('payment_reference', sa.String(length=200), nullable=True, comment='Gateway transaction reference'),
        sa.Column('courier_service', sa.String(length=100), nullable=True),
        sa.Column('courier_booking_id', sa.String(length=200), nullable=True),
        sa.Column('tracking_number', sa.String(length=200), nullable=True),
        sa.Column('pickup_scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pickup_failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pickup_failure_reason', sa.Text(), nullable=True),
        sa.Column('rescheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('committed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('declined_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decline_reason', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_info', sa.JSON(), nullable=True, comment='Tracking snapshot, courier cancellation and passthrough data'),
        sa.Column('buyer_email', sa.String(length=255), nullable=True),
        sa.Column('buyer_name', sa.String(length=255), nullable=True),
        sa.Column('seller_email', sa.String(length=255), nullable=True),
        sa.Column('seller_name', sa.String(length=255), nullable=True),
        sa.Column('book_title', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_delivery_status', 'orders', ['delivery_status'])
    op.create_index('ix_orders_payment_reference', 'orders', ['payment_reference'])
    op.create_index('ix_orders_tracking_number', 'orders', ['tracking_number'])
    op.create_index('ix_orders_pickup_failed_at', 'orders', ['pickup_failed_at'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_seller_pickup_failed', 'orders', ['seller_id', 'pickup_failed_at'])
    op.create_index('ix_orders_status_delivery', 'orders', ['status', 'delivery_status'])

    op.create_table(
        'refund_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('payment_reference', sa.String(length=200), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='Refund amount in minor units'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/success/failed'),
        sa.Column('gateway_reference', sa.String(length=200), nullable=True, comment='Gateway refund id'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refund_transactions_order_id', 'refund_transactions', ['order_id'])
    op.create_index('ix_refund_transactions_payment_reference', 'refund_transactions', ['payment_reference'])
    # At most one successful refund per order
    op.create_index(
        'uq_refund_transactions_order_success',
        'refund_transactions',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text("status = 'success'"),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('kind', sa.String(length=50), nullable=False, server_default='order_update'),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('dedupe_key', sa.String(length=255), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dedupe_key', name='uq_notifications_dedupe_key'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_order_id', 'notifications', ['order_id'])

    op.create_table(
        'order_activity_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_activity_log_order_id', 'order_activity_log', ['order_id'])


def downgrade() -> None:
    op.drop_index('ix_order_activity_log_order_id', table_name='order_activity_log')
    op.drop_table('order_activity_log')

    op.drop_index('ix_notifications_order_id', table_name='notifications')
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')

    op.drop_index('uq_refund_transactions_order_success', table_name='refund_transactions')
    op.drop_index('ix_refund_transactions_payment_reference', table_name='refund_transactions')
    op.drop_index('ix_refund_transactions_order_id', table_name='refund_transactions')
    op.drop_table('refund_transactions')

    for name in (
        'ix_orders_status_delivery',
        'ix_orders_seller_pickup_failed',
        'ix_orders_created_at',
        'ix_orders_pickup_failed_at',
        'ix_orders_tracking_number',
        'ix_orders_payment_reference',
        'ix_orders_delivery_status',
        'ix_orders_status',
        'ix_orders_seller_id',
        'ix_orders_buyer_id',
    ):
        op.drop_index(name, table_name='orders')
    op.drop_table('orders')
