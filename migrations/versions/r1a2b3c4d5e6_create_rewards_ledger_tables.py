"""Create rewards ledger tables

Revision ID: r1a2b3c4d5e6
Revises:
Create Date: 2026-02-10 19:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'r1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create ledger, balance, redemption, snapshot, settings and bookkeeping tables."""
    op.create_table(
        'points_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('customer_id', sa.String(64), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(32), nullable=False),
        sa.Column('source_id', sa.String(128), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_points_ledger'),
        sa.UniqueConstraint('shop', 'customer_id', 'type', 'source', 'source_id',
                            name='uq_points_ledger_idempotency')
    )
    op.create_index('ix_points_ledger_shop_customer_created', 'points_ledger',
                    ['shop', 'customer_id', 'created_at'])

    op.create_table(
        'customer_points_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('customer_id', sa.String(64), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_redeemed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_activity_at', sa.DateTime(), nullable=False),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_customer_points_balances'),
        sa.UniqueConstraint('shop', 'customer_id', name='uq_customer_points_balances_shop_customer')
    )
    op.create_index('ix_customer_points_balances_expiry', 'customer_points_balances',
                    ['shop', 'expired_at', 'last_activity_at'])

    op.create_table(
        'redemptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('customer_id', sa.String(64), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('value_dollars', sa.Numeric(12, 2), nullable=False),
        sa.Column('code', sa.String(64), nullable=False),
        sa.Column('discount_node_id', sa.String(255), nullable=True),
        sa.Column('idem_key', sa.String(128), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='ISSUED'),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('applied_at', sa.DateTime(), nullable=True),
        sa.Column('consumed_at', sa.DateTime(), nullable=True),
        sa.Column('consumed_order_id', sa.String(64), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('voided_at', sa.DateTime(), nullable=True),
        sa.Column('restored_at', sa.DateTime(), nullable=True),
        sa.Column('restore_reason', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_redemptions'),
        sa.UniqueConstraint('shop', 'code', name='uq_redemptions_shop_code'),
        sa.UniqueConstraint('shop', 'customer_id', 'idem_key', name='uq_redemptions_idem_key')
    )
    op.create_index('ix_redemptions_shop_customer_created', 'redemptions',
                    ['shop', 'customer_id', 'created_at'])
    op.create_index('ix_redemptions_shop_status_expires', 'redemptions',
                    ['shop', 'status', 'expires_at'])

    op.create_table(
        'order_points_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=False),
        sa.Column('order_name', sa.String(64), nullable=True),
        sa.Column('customer_id', sa.String(64), nullable=False),
        sa.Column('eligible_net_merchandise', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('points_awarded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_reversed_to_date', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(8), nullable=True),
        sa.Column('discount_codes', sa.JSON(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_order_points_snapshots'),
        sa.UniqueConstraint('shop', 'order_id', name='uq_order_points_snapshots_shop_order')
    )
    op.create_index('ix_order_points_snapshots_shop_customer', 'order_points_snapshots',
                    ['shop', 'customer_id'])

    op.create_table(
        'shop_settings',
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('earn_rate', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('redemption_steps', sa.JSON(), nullable=True),
        sa.Column('redemption_value_map', sa.JSON(), nullable=True),
        sa.Column('redemption_min_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_expire_inactivity_days', sa.Integer(), nullable=False, server_default='365'),
        sa.Column('redemption_expiry_hours', sa.Integer(), nullable=False, server_default='72'),
        sa.Column('prevent_multiple_active_redemptions', sa.Boolean(), nullable=False,
                  server_default=sa.true()),
        sa.Column('restore_points_on_redemption_expiry', sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column('eligible_collection_handle', sa.String(255), nullable=True),
        sa.Column('eligible_collection_gid', sa.String(255), nullable=True),
        sa.Column('eligible_collection_gid_handle', sa.String(255), nullable=True),
        sa.Column('excluded_customer_tags', sa.JSON(), nullable=True),
        sa.Column('include_product_tags', sa.JSON(), nullable=True),
        sa.Column('exclude_product_tags', sa.JSON(), nullable=True),
        sa.Column('excluded_collection_ids', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('shop', name='pk_shop_settings')
    )

    op.create_table(
        'shop_installations',
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('access_token', sa.String(255), nullable=True),
        sa.Column('scope', sa.String(500), nullable=True),
        sa.Column('installed_at', sa.DateTime(), nullable=False),
        sa.Column('uninstalled_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('shop', name='pk_shop_installations')
    )

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('webhook_id', sa.String(128), nullable=False),
        sa.Column('topic', sa.String(64), nullable=False),
        sa.Column('resource_id', sa.String(64), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.Column('outcome', sa.String(20), nullable=False, server_default='RECEIVED'),
        sa.Column('outcome_code', sa.String(64), nullable=True),
        sa.Column('outcome_message', sa.String(500), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_webhook_events'),
        sa.UniqueConstraint('shop', 'webhook_id', name='uq_webhook_events_shop_webhook')
    )
    op.create_index('ix_webhook_events_shop_topic', 'webhook_events', ['shop', 'topic', 'received_at'])

    op.create_table(
        'webhook_errors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('topic', sa.String(64), nullable=False),
        sa.Column('webhook_id', sa.String(128), nullable=True),
        sa.Column('error', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_webhook_errors')
    )

    op.create_table(
        'privacy_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('topic', sa.String(64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_privacy_events')
    )

    op.create_table(
        'job_locks',
        sa.Column('key', sa.String(128), nullable=False),
        sa.Column('lock_id', sa.String(64), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_job_locks')
    )


def downgrade():
    """Drop all rewards tables."""
    op.drop_table('job_locks')
    op.drop_table('privacy_events')
    op.drop_table('webhook_errors')
    op.drop_index('ix_webhook_events_shop_topic', table_name='webhook_events')
    op.drop_table('webhook_events')
    op.drop_table('shop_installations')
    op.drop_table('shop_settings')
    op.drop_index('ix_order_points_snapshots_shop_customer', table_name='order_points_snapshots')
    op.drop_table('order_points_snapshots')
    op.drop_index('ix_redemptions_shop_status_expires', table_name='redemptions')
    op.drop_index('ix_redemptions_shop_customer_created', table_name='redemptions')
    op.drop_table('redemptions')
    op.drop_index('ix_customer_points_balances_expiry', table_name='customer_points_balances')
    op.drop_table('customer_points_balances')
    op.drop_index('ix_points_ledger_shop_customer_created', table_name='points_ledger')
    op.drop_table('points_ledger')
