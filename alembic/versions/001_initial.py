"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

JSONB = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('subscription_tier', sa.String(length=16), nullable=False, server_default='free'),
        sa.Column('notification_settings', JSONB, nullable=False),
        sa.Column('quiet_hours', JSONB, nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    # Products table
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('popularity_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Watches table
    op.create_table(
        'watches',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('retailer_ids', JSONB, nullable=False),
        sa.Column('max_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('availability_type', sa.String(length=16), nullable=False, server_default='online'),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('radius_miles', sa.Integer(), nullable=True),
        sa.Column('alert_preferences', JSONB, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('alert_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_alerted', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_watches_user_id', 'watches', ['user_id'])
    op.create_index('ix_watches_product_active', 'watches', ['product_id', 'is_active'])

    # Watch packs
    op.create_table(
        'watch_packs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('product_ids', JSONB, nullable=False),
        sa.Column('subscriber_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    op.create_table(
        'user_watch_packs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('watch_pack_id', sa.String(length=36), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('customizations', JSONB, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['watch_pack_id'], ['watch_packs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'watch_pack_id', name='uq_user_watch_pack')
    )

    # Alerts table
    op.create_table(
        'alerts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('retailer_id', sa.String(length=64), nullable=False),
        sa.Column('watch_id', sa.String(length=36), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('priority', sa.String(length=8), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('data', JSONB, nullable=False),
        sa.Column('delivery_channels', JSONB, nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['watch_id'], ['watches.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_alerts_dedup_key', 'alerts',
        ['user_id', 'product_id', 'retailer_id', 'type', 'created_at']
    )
    op.create_index('ix_alerts_user_created', 'alerts', ['user_id', 'created_at'])
    op.create_index('ix_alerts_status_scheduled', 'alerts', ['status', 'scheduled_for'])


def downgrade() -> None:
    op.drop_index('ix_alerts_status_scheduled', table_name='alerts')
    op.drop_index('ix_alerts_user_created', table_name='alerts')
    op.drop_index('ix_alerts_dedup_key', table_name='alerts')
    op.drop_table('alerts')
    op.drop_table('user_watch_packs')
    op.drop_table('watch_packs')
    op.drop_index('ix_watches_product_active', table_name='watches')
    op.drop_index('ix_watches_user_id', table_name='watches')
    op.drop_table('watches')
    op.drop_table('products')
    op.drop_table('users')
