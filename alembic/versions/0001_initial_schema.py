"""initial schema: url_mappings, click_events, click_rollups

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- URL mappings (tombstoned, never hard-deleted) ---
    op.create_table('url_mappings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('short_code', sa.String(length=32), nullable=False),
        sa.Column('original_url', sa.Text(), nullable=False),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('click_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_url_mappings_short_code'), 'url_mappings', ['short_code'], unique=True)
    op.create_index('ix_url_mappings_owner_created', 'url_mappings', ['owner_id', 'created_at'])

    # --- Click events (append-only, id = idempotence key) ---
    op.create_table('click_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('short_code', sa.String(length=32), nullable=False),
        sa.Column('clicked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referer', sa.Text(), nullable=True),
        sa.Column('country', sa.String(length=100), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('device', sa.String(length=20), nullable=True),
        sa.Column('browser', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_click_events_code_clicked', 'click_events', ['short_code', 'clicked_at'])
    op.create_index('ix_click_events_clicked', 'click_events', ['clicked_at'])

    # --- Rollups ---
    op.create_table('click_rollups',
        sa.Column('short_code', sa.String(length=32), nullable=False),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('dimension', sa.String(length=16), nullable=False),
        sa.Column('bucket', sa.String(length=100), nullable=False),
        sa.Column('clicks', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('short_code', 'day', 'dimension', 'bucket'),
    )
    op.create_index('ix_click_rollups_dimension_day', 'click_rollups', ['dimension', 'day'])


def downgrade() -> None:
    op.drop_index('ix_click_rollups_dimension_day', 'click_rollups')
    op.drop_table('click_rollups')
    op.drop_index('ix_click_events_clicked', 'click_events')
    op.drop_index('ix_click_events_code_clicked', 'click_events')
    op.drop_table('click_events')
    op.drop_index('ix_url_mappings_owner_created', 'url_mappings')
    op.drop_index(op.f('ix_url_mappings_short_code'), 'url_mappings')
    op.drop_table('url_mappings')
