"""Initial relational schema

Revision ID: 001
Revises:
Create Date: 2026-09-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create markets table
    op.create_table(
        'markets',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('source_id', sa.String(255), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('subtitle', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('rules', sa.Text(), nullable=True),
        sa.Column('category', sa.String(255), nullable=True),
        sa.Column('tags', JSONB, nullable=False, server_default='[]'),
        sa.Column('content_hash', sa.String(64), nullable=True),
        sa.Column('yes_price', sa.Float(), nullable=False),
        sa.Column('no_price', sa.Float(), nullable=False),
        sa.Column('last_price', sa.Float(), nullable=True),
        sa.Column('volume', sa.Float(), nullable=False, server_default='0'),
        sa.Column('volume_24h', sa.Float(), nullable=False, server_default='0'),
        sa.Column('liquidity', sa.Float(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('result', sa.String(10), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('open_at', sa.DateTime(), nullable=True),
        sa.Column('close_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('embedding_model', sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'source_id', name='uq_markets_source_source_id'),
    )

    # Create indexes for markets (keyset listings order by (column, id))
    op.create_index('idx_markets_status', 'markets', ['status'])
    op.create_index('idx_markets_volume_id', 'markets', ['volume', 'id'])
    op.create_index('idx_markets_close_at_id', 'markets', ['close_at', 'id'])

    # Create price history table
    op.create_table(
        'market_price_history',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('market_id', sa.String(36), nullable=False),
        sa.Column('yes_price', sa.Float(), nullable=False),
        sa.Column('no_price', sa.Float(), nullable=False),
        sa.Column('volume', sa.Float(), nullable=False, server_default='0'),
        sa.Column('volume_24h', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['market_id'], ['markets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_price_history_market_recorded', 'market_price_history', ['market_id', 'recorded_at'])

    # Create jobs table
    op.create_table(
        'jobs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='queued'),
        sa.Column('payload', JSONB, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('run_at', sa.DateTime(), nullable=False),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('locked_by', sa.String(100), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'succeeded', 'failed')",
            name='jobs_status_check',
        ),
    )
    op.create_index('idx_jobs_status_run_at', 'jobs', ['status', 'run_at'])

    # Create sync runs table
    op.create_table(
        'sync_runs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('result', JSONB, nullable=True),
        sa.Column('errors', JSONB, nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_sync_runs_type_started_at', 'sync_runs', ['type', 'started_at'])

    # At most one running sync system-wide
    op.execute(
        "CREATE UNIQUE INDEX uq_sync_runs_single_running ON sync_runs (status) WHERE status = 'running'"
    )

    # Create alerts tables
    op.create_table(
        'alerts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('watchlist_id', sa.String(36), nullable=False),
        sa.Column('market_id', sa.String(36), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('threshold', sa.Float(), nullable=True),
        sa.Column('window_minutes', sa.Integer(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_triggered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['market_id'], ['markets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_alerts_watchlist', 'alerts', ['watchlist_id'])
    op.create_index('idx_alerts_market_type', 'alerts', ['market_id', 'type'])

    op.create_table(
        'alert_events',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('alert_id', sa.String(36), nullable=False),
        sa.Column('market_id', sa.String(36), nullable=False),
        sa.Column('triggered_at', sa.DateTime(), nullable=False),
        sa.Column('payload', JSONB, nullable=True),
        sa.ForeignKeyConstraint(['alert_id'], ['alerts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['market_id'], ['markets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_alert_events_market', 'alert_events', ['market_id'])
    op.create_index('idx_alert_events_alert', 'alert_events', ['alert_id', 'triggered_at'])


def downgrade() -> None:
    op.drop_table('alert_events')
    op.drop_table('alerts')
    op.drop_table('sync_runs')
    op.drop_table('jobs')
    op.drop_table('market_price_history')
    op.drop_table('markets')
