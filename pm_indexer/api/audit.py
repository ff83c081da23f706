"""Admin action audit trail."""

import hashlib
import hmac
from typing import Any, Dict, List, Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from pm_indexer.api.middleware.auth import extract_admin_key
from pm_indexer.config import settings
from pm_indexer.models import AdminAuditLog

logger = structlog.get_logger()


def token_fingerprint(token: str) -> str:
    """Stable, non-reversible identifier for an admin key."""
    digest = hmac.new(settings.token_fingerprint_secret.encode("utf-8"), token.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()[:16]


def _request_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def record_admin_action(
    db: Session,
    request: Request,
    action: str,
    status: str,
    details: Optional[Dict[str, Any]] = None,
) -> Optional[AdminAuditLog]:
    """Write one audit row.

    A failed write is logged and does not fail the admin request that
    triggered it.
    """
    token = extract_admin_key(request)
    entry = AdminAuditLog(
        action=action,
        actor=f"admin:{token_fingerprint(token)}" if token else None,
        status=status,
        request_ip=_request_ip(request),
        user_agent=request.headers.get("user-agent", "unknown"),
        details=details or {},
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("admin_audit_write_failed", action=action, status=status, error=str(e))
        return None
    return entry


def list_audit_logs(db: Session, limit: int = 50, action: Optional[str] = None) -> List[AdminAuditLog]:
    """Most recent audit rows first."""
    stmt = select(AdminAuditLog)
    if action:
        stmt = stmt.where(AdminAuditLog.action == action)
    stmt = stmt.order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc()).limit(limit)
    return db.execute(stmt).scalars().all()
