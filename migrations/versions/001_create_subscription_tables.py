"""create subscription tables

Revision ID: 001_subscription_tables
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_subscription_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user_subscriptions',
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('subscription_id', sa.String(length=64), nullable=True),
        sa.Column('plan_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='free'),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
    )
    op.create_index(op.f('ix_user_subscriptions_subscription_id'), 'user_subscriptions', ['subscription_id'], unique=False)

    op.create_table(
        'subscription_tombstones',
        sa.Column('subscription_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('subscription_id'),
    )
    op.create_index(op.f('ix_subscription_tombstones_user_id'), 'subscription_tombstones', ['user_id'], unique=False)
    op.create_index(op.f('ix_subscription_tombstones_expires_at'), 'subscription_tombstones', ['expires_at'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_subscription_tombstones_expires_at'), table_name='subscription_tombstones')
    op.drop_index(op.f('ix_subscription_tombstones_user_id'), table_name='subscription_tombstones')
    op.drop_table('subscription_tombstones')
    op.drop_index(op.f('ix_user_subscriptions_subscription_id'), table_name='user_subscriptions')
    op.drop_table('user_subscriptions')
