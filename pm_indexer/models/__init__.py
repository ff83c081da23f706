"""Database models."""

from pm_indexer.models.database import Base, engine, SessionLocal, get_db
from pm_indexer.models.market import Market
from pm_indexer.models.price_snapshot import PriceSnapshot
from pm_indexer.models.job import Job
from pm_indexer.models.sync_run import SyncRun
from pm_indexer.models.watchlist import Watchlist, WatchlistItem
from pm_indexer.models.alert import Alert, AlertEvent
from pm_indexer.models.admin_audit import AdminAuditLog

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "Market",
    "PriceSnapshot",
    "Job",
    "SyncRun",
    "Watchlist",
    "WatchlistItem",
    "Alert",
    "AlertEvent",
    "AdminAuditLog",
]
