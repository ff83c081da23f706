"""Deferred work items (embedding generation)."""

import uuid
from datetime import datetime
from typing import Dict, Any
from sqlalchemy import Column, String, Integer, Text, DateTime, Index, CheckConstraint
from pm_indexer.models.database import Base, JSONType

JOB_TYPE_EMBED_MARKET_BATCH = "embed_market_batch"

JOB_STATUS_QUEUED = "queued"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_SUCCEEDED = "succeeded"
JOB_STATUS_FAILED = "failed"


class Job(Base):
    """A claimable unit of deferred work."""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=JOB_STATUS_QUEUED)
    payload = Column(JSONType, nullable=False)

    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    run_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Claim metadata (set while processing)
    locked_at = Column(DateTime, nullable=True)
    locked_by = Column(String(100), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_jobs_status_run_at", "status", "run_at"),
        CheckConstraint(
            "status IN ('queued', 'processing', 'succeeded', 'failed')",
            name="jobs_status_check",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "payload": self.payload,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "run_at": self.run_at.isoformat() if self.run_at else None,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "locked_by": self.locked_by,
            "last_error": self.last_error,
        }

    def __repr__(self) -> str:
        """String representation."""
        return f"<Job(id={self.id}, type={self.type}, status={self.status}, attempts={self.attempts})>"
