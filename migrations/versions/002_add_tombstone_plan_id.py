"""add plan_id to subscription tombstones

Revision ID: 002_tombstone_plan_id
Revises: 001_subscription_tables
Create Date: 2026-10-18 14:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002_tombstone_plan_id'
down_revision = '001_subscription_tables'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('subscription_tombstones', sa.Column('plan_id', sa.String(length=64), nullable=True))


def downgrade() -> None:
    op.drop_column('subscription_tombstones', 'plan_id')
