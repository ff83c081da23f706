"""Watchlists, watchlist items and admin audit log

Revision ID: 003
Revises: 002
Create Date: 2026-10-17 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'watchlists',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('owner_key', sa.String(255), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('uq_watchlists_owner_name', 'watchlists', ['owner_key', 'name'], unique=True)

    op.create_table(
        'watchlist_items',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('watchlist_id', sa.String(36), nullable=False),
        sa.Column('market_id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['watchlist_id'], ['watchlists.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['market_id'], ['markets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('uq_watchlist_items_market', 'watchlist_items', ['watchlist_id', 'market_id'], unique=True)

    # Alerts created before watchlists existed have nothing to point at
    op.execute("DELETE FROM alerts WHERE watchlist_id NOT IN (SELECT id FROM watchlists)")
    op.create_foreign_key(
        'fk_alerts_watchlist', 'alerts', 'watchlists', ['watchlist_id'], ['id'], ondelete='CASCADE',
    )

    op.create_table(
        'admin_audit_logs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('actor', sa.String(100), nullable=True),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('request_ip', sa.String(100), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('details', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_admin_audit_action', 'admin_audit_logs', ['action', 'created_at'])


def downgrade() -> None:
    op.drop_table('admin_audit_logs')
    op.drop_constraint('fk_alerts_watchlist', 'alerts', type_='foreignkey')
    op.drop_table('watchlist_items')
    op.drop_table('watchlists')
