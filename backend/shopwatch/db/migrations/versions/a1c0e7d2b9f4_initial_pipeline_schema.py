"""initial pipeline schema: jobs, snapshots, change events, shops, sales points

Revision ID: a1c0e7d2b9f4
Revises:
Create Date: 2026-02-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'a1c0e7d2b9f4'
down_revision = None
branch_labels = None
depends_on = None


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    op.create_table(
        'webhook_jobs',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('topic', sa.String(length=64), nullable=False),
        sa.Column('resource_id', sa.String(length=64), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('webhook_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('process_at', sa.DateTime(), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint("status IN ('pending','processing','completed','failed')",
                           name='ck_webhook_jobs_status_valid'),
        sa.PrimaryKeyConstraint('id', name='pk_webhook_jobs'),
        sa.UniqueConstraint('webhook_id', name='uq_webhook_jobs_webhook_id'),
    )
    op.create_index('ix_webhook_jobs_status_process_at', 'webhook_jobs', ['status', 'process_at'])
    op.create_index('ix_webhook_jobs_shop_created', 'webhook_jobs', ['shop', 'created_at'])

    op.create_table(
        'product_snapshots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=512), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('vendor', sa.String(length=255), nullable=True),
        sa.Column('product_type', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='active'),
        sa.Column('tags', JSON_TYPE, nullable=False),
        sa.Column('image_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('options', JSON_TYPE, nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_product_snapshots'),
        sa.UniqueConstraint('shop', 'product_id', name='uq_product_snapshots_shop_product'),
    )

    op.create_table(
        'variant_snapshots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('variant_id', sa.String(length=64), nullable=False),
        sa.Column('inventory_item_id', sa.String(length=64), nullable=True),
        sa.Column('title', sa.String(length=512), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('compare_at_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('sku', sa.String(length=255), nullable=True),
        sa.Column('inventory_quantity', sa.Integer(), nullable=True),
        sa.Column('weight', sa.Numeric(10, 3), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_variant_snapshots'),
        sa.UniqueConstraint('shop', 'product_id', 'variant_id', name='uq_variant_snapshots_shop_product_variant'),
    )
    op.create_index('ix_variant_snapshots_shop_item', 'variant_snapshots', ['shop', 'inventory_item_id'])

    op.create_table(
        'change_events',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('event_type', sa.String(length=48), nullable=False),
        sa.Column('resource_name', sa.String(length=512), nullable=False, server_default=''),
        sa.Column('before_value', sa.Text(), nullable=True),
        sa.Column('after_value', sa.Text(), nullable=True),
        sa.Column('importance', sa.String(length=8), nullable=False, server_default='low'),
        sa.Column('detected_at', sa.DateTime(), nullable=False),
        sa.Column('diff', sa.Text(), nullable=True),
        sa.Column('context_data', sa.Text(), nullable=True),
        sa.Column('money_saved', sa.Numeric(12, 2), nullable=True),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='webhook'),
        sa.Column('topic', sa.String(length=64), nullable=True),
        sa.Column('author', sa.String(length=255), nullable=True),
        sa.Column('webhook_id', sa.String(length=255), nullable=True),
        sa.Column('idempotency_key', sa.String(length=320), nullable=True),
        sa.Column('instant_alert_sent_at', sa.DateTime(), nullable=True),
        sa.Column('digested_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint("importance IN ('low','medium','high')", name='ck_change_events_importance_valid'),
        sa.PrimaryKeyConstraint('id', name='pk_change_events'),
        sa.UniqueConstraint('idempotency_key', name='uq_change_events_idempotency_key'),
    )
    op.create_index('ix_change_events_shop_detected', 'change_events', ['shop', 'detected_at'])
    op.create_index('ix_change_events_shop_entity_type', 'change_events', ['shop', 'entity_id', 'event_type'])
    op.create_index('ix_change_events_shop_digested', 'change_events', ['shop', 'digested_at'])

    op.create_table(
        'shops',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('plan', sa.String(length=16), nullable=False, server_default='free'),
        sa.Column('alert_email', sa.String(length=255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('track_prices', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('track_visibility', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('track_inventory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('track_themes', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('track_collections', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('track_discounts', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('track_app_permissions', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('track_domains', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('instant_alerts', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('granted_scopes', JSON_TYPE, nullable=False),
        sa.Column('installed_at', sa.DateTime(), nullable=False),
        sa.Column('uninstalled_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_shops'),
        sa.UniqueConstraint('shop', name='uq_shops_shop'),
    )

    op.create_table(
        'product_sales_points',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('bucket_start', sa.Date(), nullable=False),
        sa.Column('units_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('order_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id', name='pk_product_sales_points'),
        sa.UniqueConstraint('shop', 'product_id', 'bucket_start', name='uq_product_sales_points_shop_product_day'),
    )


def downgrade() -> None:
    op.drop_table('product_sales_points')
    op.drop_table('shops')
    op.drop_index('ix_change_events_shop_digested', table_name='change_events')
    op.drop_index('ix_change_events_shop_entity_type', table_name='change_events')
    op.drop_index('ix_change_events_shop_detected', table_name='change_events')
    op.drop_table('change_events')
    op.drop_index('ix_variant_snapshots_shop_item', table_name='variant_snapshots')
    op.drop_table('variant_snapshots')
    op.drop_table('product_snapshots')
    op.drop_index('ix_webhook_jobs_shop_created', table_name='webhook_jobs')
    op.drop_index('ix_webhook_jobs_status_process_at', table_name='webhook_jobs')
    op.drop_table('webhook_jobs')
