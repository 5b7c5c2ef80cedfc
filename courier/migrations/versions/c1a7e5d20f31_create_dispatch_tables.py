"""create dispatch tables

Revision ID: c1a7e5d20f31
Revises:
Create Date: 2026-10-19 09:12:40.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c1a7e5d20f31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NON_TERMINAL = "status NOT IN ('delivered', 'failed', 'cancelled')"


def upgrade() -> None:
    op.create_table(
        'delivery_zones',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('store_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('delivery_fee', sa.DECIMAL(10, 2), nullable=False, server_default='0'),
        sa.Column('min_order_amount', sa.DECIMAL(10, 2), nullable=False, server_default='0'),
        sa.Column('free_delivery_threshold', sa.DECIMAL(10, 2), nullable=True),
        sa.Column('estimated_time_minutes', sa.Integer(), nullable=False, server_default='45'),
        sa.Column('boundary', sa.JSON(), nullable=True),
        sa.Column('color', sa.String(16), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('delivery_fee >= 0', name='ck_delivery_zones_fee_non_negative'),
        sa.CheckConstraint('min_order_amount >= 0', name='ck_delivery_zones_min_order_non_negative'),
        sa.CheckConstraint('estimated_time_minutes >= 1', name='ck_delivery_zones_eta_positive'),
    )
    op.create_index('ix_delivery_zones_store_id', 'delivery_zones', ['store_id'])
    op.create_index('ix_delivery_zones_store_active', 'delivery_zones', ['store_id', 'is_active'])

    op.create_table(
        'riders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('store_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('vehicle_type', sa.String(20), nullable=False, server_default='motorcycle'),
        sa.Column('vehicle_number', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='offline'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_online', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('current_latitude', sa.Float(), nullable=True),
        sa.Column('current_longitude', sa.Float(), nullable=True),
        sa.Column('rating', sa.DECIMAL(3, 2), nullable=False, server_default='5.00'),
        sa.Column('total_ratings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_deliveries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_seen_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "vehicle_type IN ('bicycle', 'motorcycle', 'car', 'van')", name='ck_riders_vehicle_type'
        ),
        sa.CheckConstraint("status IN ('available', 'busy', 'offline')", name='ck_riders_status'),
    )
    op.create_index('ix_riders_store_id', 'riders', ['store_id'])
    op.create_index('ix_riders_store_status', 'riders', ['store_id', 'status'])

    op.create_table(
        'delivery_orders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('store_id', sa.String(64), nullable=False),
        sa.Column('order_number', sa.String(50), nullable=False),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        sa.Column('delivery_latitude', sa.Float(), nullable=True),
        sa.Column('delivery_longitude', sa.Float(), nullable=True),
        sa.Column('order_total', sa.DECIMAL(12, 2), nullable=False, server_default='0'),
        sa.Column('country', sa.String(2), nullable=True),
        sa.Column('pickup_address', sa.Text(), nullable=True),
        sa.Column('tracking_code', sa.String(16), nullable=True),
        sa.Column('delivery_status', sa.String(20), nullable=True),
        sa.Column('rider_id', sa.Integer(), sa.ForeignKey('riders.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('tracking_code', name='uq_delivery_orders_tracking_code'),
    )
    op.create_index('ix_delivery_orders_store_id', 'delivery_orders', ['store_id'])

    op.create_table(
        'delivery_assignments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('store_id', sa.String(64), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('delivery_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rider_id', sa.Integer(), sa.ForeignKey('riders.id'), nullable=True),
        sa.Column('zone_id', sa.Integer(), sa.ForeignKey('delivery_zones.id'), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('delivery_fee', sa.DECIMAL(10, 2), nullable=False, server_default='0'),
        sa.Column('rider_earnings', sa.DECIMAL(10, 2), nullable=False, server_default='0'),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(), nullable=True),
        sa.Column('in_transit_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('delivery_notes', sa.Text(), nullable=True),
        sa.Column('recipient_name', sa.String(255), nullable=True),
        sa.Column('delivery_photo_url', sa.Text(), nullable=True),
        sa.Column('customer_rating', sa.Integer(), nullable=True),
        sa.Column('customer_feedback', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'assigned', 'accepted', 'picked_up', 'in_transit', "
            "'delivered', 'failed', 'cancelled')",
            name='ck_delivery_assignments_status',
        ),
        sa.CheckConstraint(
            'customer_rating IS NULL OR (customer_rating BETWEEN 1 AND 5)',
            name='ck_delivery_assignments_rating',
        ),
    )
    op.create_index('ix_delivery_assignments_store_id', 'delivery_assignments', ['store_id'])
    op.create_index('ix_delivery_assignments_store_status', 'delivery_assignments', ['store_id', 'status'])
    op.create_index('ix_delivery_assignments_rider_id', 'delivery_assignments', ['rider_id'])
    op.create_index(
        'uq_delivery_assignments_active_order',
        'delivery_assignments',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text(NON_TERMINAL),
    )

    op.create_table(
        'order_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('delivery_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False, server_default='notification'),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('recipient', sa.String(20), nullable=False, server_default='customer'),
        sa.Column('message_preview', sa.String(100), nullable=True),
        sa.Column('sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_order_events_order_id', 'order_events', ['order_id'])


def downgrade() -> None:
    op.drop_index('ix_order_events_order_id', table_name='order_events')
    op.drop_table('order_events')
    op.drop_index('uq_delivery_assignments_active_order', table_name='delivery_assignments')
    op.drop_index('ix_delivery_assignments_rider_id', table_name='delivery_assignments')
    op.drop_index('ix_delivery_assignments_store_status', table_name='delivery_assignments')
    op.drop_index('ix_delivery_assignments_store_id', table_name='delivery_assignments')
    op.drop_table('delivery_assignments')
    op.drop_index('ix_delivery_orders_store_id', table_name='delivery_orders')
    op.drop_table('delivery_orders')
    op.drop_index('ix_riders_store_status', table_name='riders')
    op.drop_index('ix_riders_store_id', table_name='riders')
    op.drop_table('riders')
    op.drop_index('ix_delivery_zones_store_active', table_name='delivery_zones')
    op.drop_index('ix_delivery_zones_store_id', table_name='delivery_zones')
    op.drop_table('delivery_zones')
