"""Audit trail of admin actions."""

import uuid
from datetime import datetime
from typing import Dict, Any
from sqlalchemy import Column, String, Text, DateTime, Index
from pm_indexer.models.database import Base, JSONType


class AdminAuditLog(Base):
    """One admin action and its outcome.

    ``actor`` is a keyed fingerprint of the admin key, never the key itself.
    """

    __tablename__ = "admin_audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    action = Column(String(100), nullable=False)  # e.g. "sync.incremental"
    actor = Column(String(100), nullable=True)
    status = Column(String(32), nullable=False)  # "success" or "failure"
    request_ip = Column(String(100), nullable=True)
    user_agent = Column(Text, nullable=True)
    details = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_admin_audit_action", "action", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "actor": self.actor,
            "status": self.status,
            "request_ip": self.request_ip,
            "user_agent": self.user_agent,
            "details": self.details or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
