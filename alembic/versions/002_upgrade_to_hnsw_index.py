"""Market vector table with HNSW index

Revision ID: 002
Revises: 001
Create Date: 2026-09-01 00:10:00.000000

Only applies when the vector index shares the relational database
(VECTOR_DATABASE_URL unset). Otherwise the index creates its own table on
first use.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Enable pgvector extension
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    op.create_table(
        'market_vectors',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('embedding', sa.String(), nullable=False),  # Will be vector(384)
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('volume', sa.Float(), nullable=False, server_default='0'),
        sa.Column('payload', JSONB, nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # Alter embedding column to use vector type
    op.execute('ALTER TABLE market_vectors ALTER COLUMN embedding TYPE vector(384) USING embedding::vector')

    # m=16: max connections per layer; ef_construction=64: build-time search depth
    op.execute('''
        CREATE INDEX idx_market_vectors_embedding
        ON market_vectors
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
    ''')
    op.create_index('idx_market_vectors_source_status', 'market_vectors', ['source', 'status'])


def downgrade() -> None:
    op.execute('DROP INDEX IF EXISTS idx_market_vectors_embedding')
    op.drop_table('market_vectors')
