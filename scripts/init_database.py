#!/usr/bin/env python3
"""Initialize database tables and the vector index."""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pm_indexer.models import Base, engine
from pm_indexer.search.vector_index import get_vector_index
from pm_indexer.utils.logging import configure_logging
import structlog

logger = structlog.get_logger()


def init_database():
    """Initialize database with schema."""
    try:
        logger.info("database_init_start")

        # Create all tables
        Base.metadata.create_all(bind=engine)

        # Vector table, extension and HNSW index
        get_vector_index().ensure_collection()

        logger.info("database_init_complete", tables=list(Base.metadata.tables.keys()))

        print("✓ Database initialized successfully")
        print(f"✓ Created tables: {', '.join(Base.metadata.tables.keys())}")
        print("✓ Vector index ready")

    except Exception as e:
        logger.error("database_init_failed", error=str(e))
        print(f"✗ Database initialization failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    configure_logging()
    init_database()
