"""Initial schema

Revision ID: 001
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(255), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('brand', sa.String(255)),
        sa.Column('category', sa.String(500)),
        sa.Column('gtin', sa.String(50)),
        sa.Column('mpn', sa.String(100)),
        sa.Column('link', sa.String(1024)),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('compare_at_price', sa.Numeric(12, 2)),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('availability', sa.String(20), nullable=False, server_default='IN_STOCK'),
        sa.Column('images', sa.JSON()),
        sa.Column('tags', sa.JSON()),
        sa.Column('collections', sa.JSON()),
        sa.Column('metadata', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('idx_products_tenant_order', 'products', ['tenant_id', 'updated_at', 'id'])

    op.create_table(
        'feeds',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('channel', sa.String(32), nullable=False),
        sa.Column('format', sa.String(8), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('settings', sa.JSON()),
        sa.Column('products_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_generated_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'name', name='uix_feed_tenant_name'),
    )
    op.create_index('ix_feeds_tenant_id', 'feeds', ['tenant_id'])
    op.create_index('ix_feeds_status', 'feeds', ['status'])

    op.create_table(
        'generation_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('feed_id', sa.String(36), sa.ForeignKey('feeds.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='running'),
        sa.Column('trigger', sa.String(16), nullable=False, server_default='manual'),
        sa.Column('products_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('products_included', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('products_excluded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('generation_time_ms', sa.Integer()),
        sa.Column('file_size_bytes', sa.BigInteger()),
        sa.Column('artifact_ref', sa.String(500)),
        sa.Column('error_code', sa.String(50)),
        sa.Column('error_message', sa.Text()),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime()),
    )
    op.create_index('ix_generation_history_feed_id', 'generation_history', ['feed_id'])
    op.create_index('ix_generation_history_status', 'generation_history', ['status'])

    op.create_table(
        'feed_schedules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('feed_id', sa.String(36), sa.ForeignKey('feeds.id', ondelete='CASCADE'), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('interval_hours', sa.Integer(), nullable=False),
        sa.Column('next_run_at', sa.DateTime()),
        sa.Column('last_run_at', sa.DateTime()),
        sa.Column('consecutive_failures', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_feed_schedules_feed_id', 'feed_schedules', ['feed_id'], unique=True)
    op.create_index('ix_feed_schedules_next_run_at', 'feed_schedules', ['next_run_at'])

    op.create_table(
        'webhook_subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('feed_id', sa.String(36), sa.ForeignKey('feeds.id', ondelete='CASCADE'), nullable=False),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('events', sa.JSON()),
        sa.Column('secret', sa.String(255)),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('timeout_seconds', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('total_deliveries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_deliveries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_deliveries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_triggered_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_webhook_subscriptions_feed_id', 'webhook_subscriptions', ['feed_id'], unique=True)

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('subscription_id', sa.Integer(),
                  sa.ForeignKey('webhook_subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('feed_id', sa.String(36), nullable=False),
        sa.Column('event', sa.String(50), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=False),
        sa.Column('last_error', sa.Text()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime()),
    )
    op.create_index('ix_webhook_events_subscription_id', 'webhook_events', ['subscription_id'])
    op.create_index('ix_webhook_events_feed_id', 'webhook_events', ['feed_id'])
    op.create_index('idx_webhook_events_due', 'webhook_events', ['status', 'next_attempt_at'])

    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('subscription_id', sa.Integer(),
                  sa.ForeignKey('webhook_subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_id', sa.Integer(),
                  sa.ForeignKey('webhook_events.id', ondelete='CASCADE'), nullable=False),
        sa.Column('feed_id', sa.String(36), nullable=False),
        sa.Column('event', sa.String(50), nullable=False),
        sa.Column('payload', sa.Text()),
        sa.Column('attempt', sa.Integer(), nullable=False),
        sa.Column('status_code', sa.Integer()),
        sa.Column('response_time_ms', sa.Integer()),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('error_message', sa.Text()),
        sa.Column('delivered_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('event_id', 'attempt', name='uix_delivery_event_attempt'),
    )
    op.create_index('ix_webhook_deliveries_subscription_id', 'webhook_deliveries', ['subscription_id'])
    op.create_index('ix_webhook_deliveries_event_id', 'webhook_deliveries', ['event_id'])
    op.create_index('ix_webhook_deliveries_feed_id', 'webhook_deliveries', ['feed_id'])


def downgrade():
    op.drop_table('webhook_deliveries')
    op.drop_table('webhook_events')
    op.drop_table('webhook_subscriptions')
    op.drop_table('feed_schedules')
    op.drop_table('generation_history')
    op.drop_table('feeds')
    op.drop_table('products')
