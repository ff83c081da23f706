"""Sync run bookkeeping."""

import uuid
from datetime import datetime
from typing import Dict, Any
from sqlalchemy import Column, String, Integer, DateTime, Index, text
from pm_indexer.models.database import Base, JSONType


class SyncRun(Base):
    """One orchestrator invocation; a `running` row marks a sync in flight."""

    __tablename__ = "sync_runs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String(20), nullable=False)  # "incremental" or "full"
    status = Column(String(20), nullable=False, default="running")  # running, success, partial, failed

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    result = Column(JSONType, nullable=True)
    errors = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_sync_runs_type_started_at", "type", "started_at"),
        # At most one running row system-wide
        Index(
            "uq_sync_runs_single_running",
            "status",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "result": self.result,
            "errors": self.errors or [],
        }

    def __repr__(self) -> str:
        """String representation."""
        return f"<SyncRun(id={self.id}, type={self.type}, status={self.status})>"
